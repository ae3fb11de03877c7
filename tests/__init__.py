'''utilities for tests'''

__author__ = "research@icarai.io"

# built-ins
import filecmp
import os
import unittest

# intra-project
import util.fastq
import util.file


def assert_equal_contents(testCase, filename1, filename2):
    'Assert contents of two files are equal for a unittest.TestCase'
    testCase.assertTrue(filecmp.cmp(filename1, filename2, shallow=False))


def write_fastq(fname, records):
    ''' Write (id, seq, qual) or (id, description, seq, qual) tuples as a
        FASTQ file, gzip-compressed when fname ends in .gz.
    '''
    with util.file.open_or_gzopen(fname, 'wt') as outf:
        for rec in records:
            if len(rec) == 3:
                rec = (rec[0], None) + tuple(rec[1:])
            util.fastq.write_fastq_record(outf, util.fastq.FastqRecord(*rec))
    return fname


def read_fastq(fname):
    return list(util.fastq.read_fastq(fname))


class TestCaseWithTmp(unittest.TestCase):
    'Base class for tests that use tempDir'

    @classmethod
    def setUpClass(cls):
        cls._class_tempdir = util.file.set_tmp_dir(cls.__name__)

    def setUp(self):
        util.file.set_tmp_dir(type(self).__name__)

    @classmethod
    def tearDownClass(cls):
        util.file.destroy_tmp_dir(cls._class_tempdir)

    def tearDown(self):
        util.file.destroy_tmp_dir()

    def assertEqualContents(self, f1, f2):
        assert_equal_contents(self, f1, f2)


"""
Test modules are never executable scripts; assure the executable bit is
not set so none of them is silently skipped by a collector.
"""


def assert_none_executable():
    testDir = os.path.dirname(__file__)
    assert all(not os.access(os.path.join(testDir, filename), os.X_OK) for filename in os.listdir(testDir)
               if filename.endswith('.py'))


assert_none_executable()
