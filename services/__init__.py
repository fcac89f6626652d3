"""
Service package marker.

Intentionally empty to avoid heavy imports at package import time.
Import the concrete modules directly, e.g.:

    from services.age_gate import evaluate
    from services.consent import ConsentRecordManager
    from services.onboarding import OnboardingService
    from services.storage import SqliteOnboardingStore
"""
__all__: list[str] = []
