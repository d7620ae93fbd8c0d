# config.py


class Config:
    DEBUG = False
    TESTING = False
    COUPON_SETTINGS_SECTION = "coupons"     # key in config.json


class ProductionConfig(Config):
    pass


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    DEBUG = True
