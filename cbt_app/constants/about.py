"""Static metadata describing the CBT service."""

APP_NAME = "CBT System"
APP_VERSION = "1.0.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "Computer-based testing service: author questions and tests, run timed "
    "test sessions, score attempts and report results over a JSON API."
)
