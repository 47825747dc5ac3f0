"""Static metadata describing BioBoost."""

APP_NAME = "BioBoost"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "BioBoost teaches the Krebs cycle through short quizzes with a limited number "
    "of attempts per learner, backed by a hosted data store."
)
