from .registration import registration_bp, register_coupon_command

__all__ = ["registration_bp", "register_coupon_command"]
