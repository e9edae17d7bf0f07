from hypothesis import settings


settings.register_profile("default", settings(deadline=None))
settings.load_profile("default")


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
