import sys


def build_logging_config(log_level="INFO"):
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "verbose": {
                "format": "{asctime} {levelname} {name}: {message}",
                "style": "{",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "verbose",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": log_level,
        },
        "loggers": {
            "django": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
            "django.request": {
                "handlers": ["console"],
                "level": "ERROR",
                "propagate": False,
            },
            "radiopharmacy": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
        },
    }

    # Keep test output quiet
    if "test" in sys.argv or any("pytest" in arg for arg in sys.argv):
        config["handlers"]["console"] = {"class": "logging.NullHandler"}

    return config
