import os


class Config:
    """Configuration for the Flask app and database.

    - ``SQLALCHEMY_DATABASE_URI``: defaults to a local SQLite file named
      ``cutflow.db`` but can be overridden via the ``DATABASE_URL``
      environment variable (e.g. a PostgreSQL URL in production).
    - ``SQLALCHEMY_TRACK_MODIFICATIONS``: disables the event system which
      otherwise adds overhead.
    - ``SECRET_KEY``: used by Flask for session signing.  Set this to a strong
      random value via the environment in production.
    - ``JSON_SORT_KEYS``: keeps keys in insertion order in JSON responses.
    - ``INVOICE_SEQUENCE_START``: first sequential suffix handed out for each
      workshop/day invoice prefix.
    - ``INVOICE_NUMBER_RETRIES``: how many times invoice generation is retried
      when a concurrent writer took the same number.
    - ``BATCH_CODE_WIDTH``: zero-padding applied to batch codes.
    """

    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///cutflow.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    JSON_SORT_KEYS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    INVOICE_SEQUENCE_START = int(os.getenv("INVOICE_SEQUENCE_START", "1000"))
    INVOICE_NUMBER_RETRIES = int(os.getenv("INVOICE_NUMBER_RETRIES", "3"))
    BATCH_CODE_WIDTH = int(os.getenv("BATCH_CODE_WIDTH", "3"))


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
