''' This gets the package version into python-land
'''

__author__ = "research@icarai.io"
__version__ = None

import os
import os.path
import subprocess

PACKAGE_NAME = 'windchime-prep'


def get_project_path():
    '''Return the absolute path of the top-level project, assumed to be the
       parent of the directory containing this script.'''
    path = os.path.abspath(os.path.expanduser(__file__))
    return os.path.dirname(os.path.dirname(path))


def release_file():
    return os.path.join(get_project_path(), 'VERSION')


def read_release_version():
    try:
        with open(release_file(), 'rt') as inf:
            return inf.readline().strip() or None
    except OSError:
        return None


def call_git_describe():
    try:
        out = subprocess.check_output(
            ['git', 'describe', '--tags', '--always', '--dirty'],
            cwd=get_project_path(), stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.decode('utf-8').strip() or None


def installed_version():
    from importlib.metadata import version, PackageNotFoundError
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return None


def get_version():
    ''' Installed distribution metadata first, then a VERSION file next to
        the sources, then git.  Falls back to a dev marker rather than failing.
    '''
    global __version__
    if __version__ is None:
        __version__ = installed_version() or read_release_version() or call_git_describe() or '0.0.0.dev0'
    return __version__


if __name__ == "__main__":
    print(get_version())
