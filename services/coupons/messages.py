# services/coupons/messages.py
"""User-facing strings. Workflow code only ever picks keys; text lives here."""

LANGUAGES = ("en", "ta")

MESSAGES = {
    "en": {
        "requiredError": "Coupon Code and Mobile Number are required.",
        "codeLengthError": "QR code must be exactly 6 digits.",
        "mobileLengthError": "Mobile number must be exactly 10 digits.",
        "nameFormatError": "Name must contain only letters and spaces.",
        "successMessage": "Customer registered successfully!",
        "configError": "Please set Script URL and Sheet URL in the app.",
        "invalidSheetUrl": "Invalid Google Sheet URL. Paste the full link including gid.",
        "submitError": "Could not save to sheet. Please try again.",
        "busyError": "A registration is already in progress. Please wait.",
        "duplicateQrError": "This QR code is already linked to a mobile number.",
        "duplicateMobileError": "This mobile number is already linked to another QR code.",
        "invalidQrError": "Invalid QR code. Please enter a valid QR code from the sheet.",
        "offerInactiveError": "The offer for this QR code is not active.",
        "offerDateError": "The offer for this QR code is not valid on this date.",
        "offerNotEligibleError": "This QR code is not eligible for any offer.",
        "offerReadError": "Could not read offers. Please try again.",
        "unverifiedError": "Registration might not have saved. Please refresh and check the sheet.",
        "cameraError": "Could not access the camera. Please check permissions.",
    },
    "ta": {
        "requiredError": "கூப்பன் குறியீடு மற்றும் மொபைல் எண் தேவை.",
        "codeLengthError": "QR குறியீடு சரியாக 6 இலக்கங்களாக இருக்க வேண்டும்.",
        "mobileLengthError": "மொபைல் எண் சரியாக 10 இலக்கங்களாக இருக்க வேண்டும்.",
        "nameFormatError": "பெயரில் எழுத்துகள் மற்றும் இடைவெளிகள் மட்டுமே இருக்க வேண்டும்.",
        "successMessage": "வாடிக்கையாளர் வெற்றிகரமாக பதிவு செய்யப்பட்டார்!",
        "configError": "Script URL மற்றும் Sheet URL அமைக்கவும்.",
        "invalidSheetUrl": "செல்லுபடியாகாத Google Sheet URL. முழு இணைப்பை ஒட்டவும் (gid உடன்).",
        "submitError": "ஷீட்டில் சேமிக்க முடியவில்லை. மீண்டும் முயற்சிக்கவும்.",
        "busyError": "ஒரு பதிவு ஏற்கனவே நடைபெறுகிறது. காத்திருக்கவும்.",
        "duplicateQrError": "இந்த QR குறியீடு ஏற்கனவே ஒரு மொபைல் எண்ணுடன் இணைக்கப்பட்டுள்ளது.",
        "duplicateMobileError": "இந்த மொபைல் எண் ஏற்கனவே வேறு QR குறியீட்டுடன் இணைக்கப்பட்டுள்ளது.",
        "invalidQrError": "செல்லுபடியாகாத QR குறியீடு. ஷீட்டில் உள்ள சரியான QR குறியீட்டை உள்ளிடவும்.",
        "offerInactiveError": "இந்த QR குறியீட்டுக்கான சலுகை செயலில் இல்லை.",
        "offerDateError": "இந்த QR குறியீட்டுக்கான சலுகை இன்று செல்லுபடியாகாது.",
        "offerNotEligibleError": "இந்த QR குறியீடு எந்த சலுகைக்கும் தகுதியற்றது.",
        "offerReadError": "சலுகைகளைப் படிக்க முடியவில்லை. மீண்டும் முயற்சிக்கவும்.",
        "unverifiedError": "பதிவு சேமிக்கப்படாமல் இருக்கலாம். ஷீட்டை புதுப்பித்து சரிபார்க்கவும்.",
        "cameraError": "கேமராவை அணுக முடியவில்லை. அனுமதிகளைச் சரிபார்க்கவும்.",
    },
}


def message(key: str, lang: str = "en") -> str:
    """Localized text for `key`; falls back to English, then to the key itself."""
    table = MESSAGES.get(lang) or MESSAGES["en"]
    return table.get(key) or MESSAGES["en"].get(key) or key
