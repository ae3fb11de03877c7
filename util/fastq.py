'''Streaming access to FASTQ read files, plain or gzip-compressed.

Records are parsed with Biopython's FastqGeneralIterator, one at a time,
so two files can be walked in lockstep without holding either in memory.
'''

__author__ = "research@icarai.io"

import collections
import logging

from Bio.SeqIO.QualityIO import FastqGeneralIterator

import util.file

log = logging.getLogger(__name__)


class FastqFormatError(ValueError):
    '''Indicates a FASTQ record that cannot be parsed'''

    def __init__(self, fname, reason=None):
        self.fname = fname
        self.reason = reason
        super(FastqFormatError, self).__init__(
            "Malformed FASTQ record in {} ({})".format(fname, reason)
        )


class FastqRecord(collections.namedtuple('FastqRecord', ['id', 'description', 'seq', 'qual'])):
    '''One FASTQ record. `description` is None when the title line holds only the id.'''
    __slots__ = ()

    @classmethod
    def from_title(cls, title, seq, qual):
        fields = title.split(None, 1)
        if not fields:
            return cls('', None, seq, qual)
        return cls(fields[0], fields[1] if len(fields) > 1 else None, seq, qual)

    @property
    def title(self):
        if self.description:
            return '{} {}'.format(self.id, self.description)
        return self.id

    def trim_left(self, n):
        '''Copy of this record with the first n bases and qualities removed.'''
        return self._replace(seq=self.seq[n:], qual=self.qual[n:])

    def format(self):
        return '@{}\n{}\n+\n{}\n'.format(self.title, self.seq, self.qual)


class FastqReader(object):
    ''' Forward-only iterator of FastqRecords from one file.  Compression is
        decided once, when the file is opened, from the .gz suffix.
        Use as a context manager so the underlying handle is closed.
    '''

    def __init__(self, fname):
        self.fname = str(fname)
        self._inf = util.file.open_or_gzopen(self.fname, 'rt')
        self._records = FastqGeneralIterator(self._inf)

    def __iter__(self):
        return self

    def __next__(self):
        try:
            title, seq, qual = next(self._records)
        except ValueError as e:
            raise FastqFormatError(self.fname, str(e)) from e
        return FastqRecord.from_title(title, seq, qual)

    def close(self):
        self._inf.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def read_fastq(fname):
    ''' Generate every FastqRecord in a file, closing it when exhausted. '''
    with FastqReader(fname) as reader:
        for rec in reader:
            yield rec


def write_fastq_record(outf, rec):
    outf.write(rec.format())
