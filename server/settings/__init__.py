"""Main settings file.

Settings are split into components and assembled with django-split-settings.
Values that differ between deployments are read from the environment
(or ``config/.env``) with python-decouple.
"""

from split_settings.tools import include

include(
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/drive.py',
)
