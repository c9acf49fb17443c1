import sentry_sdk

from image_redirect.settings import settings


def init_sentry():
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            traces_sample_rate=0.01,
            send_default_pii=False,
            environment=settings.SENTRY_ENVIRONMENT,
        )
