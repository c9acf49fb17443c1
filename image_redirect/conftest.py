from image_redirect.tests.fixtures_backend import *  # noqa
from image_redirect.tests.fixtures_clients import *  # noqa
