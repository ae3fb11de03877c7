'''This gives a number of useful quick methods for dealing with
tab-text files and gzipped files, plus general file-handling routines.
'''

__author__ = "research@icarai.io"

import contextlib
import errno
import gzip
import logging
import os
import os.path
import shutil
import tempfile

log = logging.getLogger(__name__)

# gzip output is written at the strongest compression level
GZIP_COMPRESSLEVEL = 9


def get_project_path():
    '''Return the absolute path of the top-level project, assumed to be the
       parent of the directory containing this script.'''
    path = os.path.abspath(os.path.expanduser(__file__))
    return os.path.dirname(os.path.dirname(path))


def get_test_path():
    '''Return absolute path of "tests" directory'''
    return os.path.join(get_project_path(), 'tests')


def get_test_input_path(testClassInstance=None):
    '''Return the path to the directory containing input files for the specified
       test class
    '''
    if testClassInstance is not None:
        return os.path.join(get_test_path(), 'input', type(testClassInstance).__name__)
    else:
        return os.path.join(get_test_path(), 'input')


def mkstempfname(suffix='', prefix='tmp', directory=None, text=False):
    ''' There's no other one-liner way to securely ask for a temp file by
        filename only.  This calls mkstemp, which does what we want, except
        that it returns an open file handle, so close it first then return
        the name part only.
    '''
    fd, fn = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory, text=text)
    os.close(fd)
    return fn


@contextlib.contextmanager
def tmp_dir(*args, **kwargs):
    """Create and return a temporary directory, which is cleaned up on context exit
    unless keep_tmp() is True."""
    name = None
    try:
        name = tempfile.mkdtemp(*args, **kwargs)
        yield name
    finally:
        if name is not None:
            if keep_tmp():
                log.debug('keeping tempdir ' + name)
            else:
                shutil.rmtree(name, ignore_errors=True)


def keep_tmp():
    """Whether to preserve temporary directories and files (useful during debugging).
    Return True if the environment variable WINDCHIME_TMP_DIRKEEP is set.
    """
    return 'WINDCHIME_TMP_DIRKEEP' in os.environ


def set_tmp_dir(name):
    proposed_prefix = ['tmp']
    if name:
        proposed_prefix.append(name)
    tempfile.tempdir = tempfile.mkdtemp(prefix='-'.join(proposed_prefix) + '-')
    os.environ['TMPDIR'] = tempfile.tempdir
    return tempfile.tempdir


def destroy_tmp_dir(tempdir=None):
    if not keep_tmp():
        if tempdir:
            shutil.rmtree(tempdir, ignore_errors=True)
        elif tempfile.tempdir:
            shutil.rmtree(tempfile.tempdir, ignore_errors=True)
    tempfile.tempdir = None


def mkdir_p(dirpath):
    ''' Verify that the directory given exists, and if not, create it.
    '''
    try:
        os.makedirs(dirpath)
    except OSError as exc:
        if exc.errno == errno.EEXIST and os.path.isdir(dirpath):
            pass
        else:
            raise


def is_gzipped_name(fname):
    return str(fname).endswith('.gz')


def open_or_gzopen(fname, mode='rt', **kwargs):
    ''' Open a plain or gzip-compressed file, chosen once by the file name
        suffix.  Text mode is the default for both kinds.  Multi-member gzip
        input (e.g. concatenated .fastq.gz files) is read through to the end.
    '''
    fname = str(fname)
    if is_gzipped_name(fname):
        if 'b' not in mode and 't' not in mode:
            mode += 't'
        if 'w' in mode or 'a' in mode:
            kwargs.setdefault('compresslevel', GZIP_COMPRESSLEVEL)
        return gzip.open(fname, mode, **kwargs)
    return open(fname, mode, **kwargs)


def current_umask():
    ''' The process umask; os.umask can only be read by setting it. '''
    umask = os.umask(0o022)
    os.umask(umask)
    return umask


@contextlib.contextmanager
def atomic_output(fname):
    ''' Yield a temporary file name in the same directory as `fname` (and
        with the same suffix, so open_or_gzopen picks the same compression).
        On clean exit the temporary file is renamed onto `fname`; if the
        block raises, the temporary file is removed and `fname` is untouched.
    '''
    fname = str(fname)
    directory = os.path.dirname(os.path.abspath(fname))
    base = os.path.basename(fname)
    suffix = ''.join(('.' + s) for s in base.split('.')[1:])
    tmp_fn = mkstempfname(suffix=suffix, prefix='.{}.'.format(base.split('.')[0]), directory=directory)
    try:
        yield tmp_fn
        # mkstemp creates 0600; give the output the mode a plain open() would
        os.chmod(tmp_fn, 0o666 & ~current_umask())
        os.replace(tmp_fn, fname)
        log.debug("wrote %s", fname)
    finally:
        if os.path.isfile(tmp_fn):
            os.unlink(tmp_fn)


def slurp_file(fname, maxSizeMb=50):
    '''Read in a file into a string, refusing to read anything unreasonably large.'''
    fileSize = os.path.getsize(fname)
    if maxSizeMb and fileSize > maxSizeMb * 1024 * 1024:
        raise RuntimeError('Tried to slurp large file {} (size={}); are you sure?'.format(fname, fileSize))
    with open(fname) as f:
        return f.read()


def dump_file(fname, value):
    """store string in file"""
    with open(fname, 'w') as out:
        out.write(str(value))
