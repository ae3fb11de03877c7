# Unit tests for util.file.py

__author__ = "research@icarai.io"

import gzip
import os
import os.path
import stat
import tempfile

import pytest

import util.file


def testTempFiles():
    '''Test creation of tempfiles by name, as well as dump_file/slurp_file routines'''
    sfx = 'tmp-file-test'
    my_tmp_fn = util.file.mkstempfname(sfx)
    try:
        assert os.path.isfile(my_tmp_fn)
        assert my_tmp_fn.endswith(sfx)

        fileValue = 'my\ntest\ndata\n' + my_tmp_fn + '\n'
        util.file.dump_file(fname=my_tmp_fn, value=fileValue)
        assert os.path.getsize(my_tmp_fn) == len(fileValue)
        assert util.file.slurp_file(my_tmp_fn) == fileValue

        largeString = 'A' * (2 * 1024 * 1024)
        util.file.dump_file(fname=my_tmp_fn, value=largeString)
        with pytest.raises(RuntimeError):
            util.file.slurp_file(my_tmp_fn, maxSizeMb=1)
    finally:
        os.unlink(my_tmp_fn)
    assert not os.path.isfile(my_tmp_fn)


def test_tmp_dir_keep(monkeypatch):
    monkeypatch.setenv('WINDCHIME_TMP_DIRKEEP', '1')
    with util.file.tmp_dir() as kept:
        pass
    assert os.path.isdir(kept)
    monkeypatch.delenv('WINDCHIME_TMP_DIRKEEP')
    with util.file.tmp_dir() as removed:
        pass
    assert not os.path.exists(removed)


def test_mkdir_p():
    base = tempfile.mkdtemp()
    nested = os.path.join(base, 'a', 'b')
    util.file.mkdir_p(nested)
    util.file.mkdir_p(nested)
    assert os.path.isdir(nested)
    fname = os.path.join(base, 'file')
    util.file.dump_file(fname, 'x')
    with pytest.raises(OSError):
        util.file.mkdir_p(fname)


def test_open_or_gzopen_text_default():
    base = tempfile.mkdtemp()
    gz = os.path.join(base, 'x.txt.gz')
    with util.file.open_or_gzopen(gz, 'w') as outf:
        outf.write('hello\n')
    with gzip.open(gz, 'rt') as inf:
        assert inf.read() == 'hello\n'
    with util.file.open_or_gzopen(gz) as inf:
        assert inf.read() == 'hello\n'

    plain = os.path.join(base, 'x.txt')
    with util.file.open_or_gzopen(plain, 'wt') as outf:
        outf.write('hello\n')
    with util.file.open_or_gzopen(plain) as inf:
        assert inf.read() == 'hello\n'


def test_open_or_gzopen_multimember():
    gz = os.path.join(tempfile.mkdtemp(), 'x.fastq.gz')
    with open(gz, 'wb') as outf:
        outf.write(gzip.compress(b'part one\n'))
        outf.write(gzip.compress(b'part two\n'))
    with util.file.open_or_gzopen(gz) as inf:
        assert inf.read().splitlines() == ['part one', 'part two']


class TestAtomicOutput(object):

    def test_success_renames(self):
        out_dir = tempfile.mkdtemp()
        fname = os.path.join(out_dir, 'result.fastq.gz')
        with util.file.atomic_output(fname) as tmp_fn:
            assert os.path.dirname(tmp_fn) == out_dir
            assert tmp_fn.endswith('.fastq.gz')
            assert not os.path.exists(fname)
            with util.file.open_or_gzopen(tmp_fn, 'wt') as outf:
                outf.write('@r\nA\n+\nI\n')
        assert os.listdir(out_dir) == ['result.fastq.gz']
        with gzip.open(fname, 'rt') as inf:
            assert inf.read() == '@r\nA\n+\nI\n'

    def test_failure_leaves_nothing(self):
        out_dir = tempfile.mkdtemp()
        fname = os.path.join(out_dir, 'result.tsv')
        with pytest.raises(ValueError):
            with util.file.atomic_output(fname) as tmp_fn:
                util.file.dump_file(tmp_fn, 'partial')
                raise ValueError('boom')
        assert os.listdir(out_dir) == []

    def test_failure_keeps_existing(self):
        out_dir = tempfile.mkdtemp()
        fname = os.path.join(out_dir, 'result.tsv')
        util.file.dump_file(fname, 'old\n')
        with pytest.raises(ValueError):
            with util.file.atomic_output(fname) as tmp_fn:
                util.file.dump_file(tmp_fn, 'new\n')
                raise ValueError('boom')
        assert util.file.slurp_file(fname) == 'old\n'
        assert os.listdir(out_dir) == ['result.tsv']

    def test_overwrites_existing(self):
        out_dir = tempfile.mkdtemp()
        fname = os.path.join(out_dir, 'result.tsv')
        util.file.dump_file(fname, 'old\n')
        with util.file.atomic_output(fname) as tmp_fn:
            util.file.dump_file(tmp_fn, 'new\n')
        assert util.file.slurp_file(fname) == 'new\n'

    @pytest.mark.parametrize("umask,expected", [(0o022, 0o644), (0o002, 0o664), (0o077, 0o600)])
    def test_mode_follows_umask(self, umask, expected):
        out_dir = tempfile.mkdtemp()
        fname = os.path.join(out_dir, 'manifest.tsv')
        old_umask = os.umask(umask)
        try:
            with util.file.atomic_output(fname) as tmp_fn:
                util.file.dump_file(tmp_fn, 'sample-id\n')
            assert util.file.current_umask() == umask
        finally:
            os.umask(old_umask)
        assert stat.S_IMODE(os.stat(fname).st_mode) == expected
