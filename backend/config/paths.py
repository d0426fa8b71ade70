"""
Filesystem locations used by the image updater
"""

import os

CONTAINER_DATA_DIR = '/app/data'
LOCAL_DATA_DIR = './data'


def resolve_data_dir(environ=None) -> str:
    """IMAGE_UPDATER_DATA_DIR wins; otherwise the volume mount, or ./data when run from a checkout"""
    environ = os.environ if environ is None else environ
    explicit = environ.get('IMAGE_UPDATER_DATA_DIR')
    if explicit:
        return explicit
    if os.path.exists('/app'):
        return CONTAINER_DATA_DIR
    return LOCAL_DATA_DIR


DATA_DIR = resolve_data_dir()
LOG_DIR = os.path.join(DATA_DIR, 'logs')
