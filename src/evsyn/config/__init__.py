from .settings import ScoringSettings, Settings, settings  # noqa: F401
