#!/usr/bin/env python
"""
Demultiplex paired-end amplicon reads by an inline adapter sequence, and
build the QIIME-style manifest of the demultiplexed files.
"""

__author__ = "research@icarai.io"
__commands__ = []

import argparse
import collections
import concurrent.futures
import csv
import logging
import os
import os.path

import util.cmd
import util.config
import util.fastq
import util.file
import util.misc

log = logging.getLogger(__name__)

BARCODE_COLUMNS = ('name', 'file_stem', 'idx1', 'seq1', 'idx2', 'seq2')
MANIFEST_HEADER = ('sample-id', 'forward-absolute-filepath', 'reverse-absolute-filepath')
SUMMARY_HEADER = ('sample_id', 'file_stem', 'status', 'pairs_examined', 'pairs_retained', 'message')


class PairedReadsNotFoundError(FileNotFoundError):
    '''Indicates that an expected read file of a sample does not exist'''


class BarcodeRowError(ValueError):
    '''Indicates a barcode table row that does not have the six expected fields'''


# ========================
# ***  barcode tables  ***
# ========================


class SampleDescriptor(collections.namedtuple('SampleDescriptor', BARCODE_COLUMNS)):
    ''' One row of the barcode table.  The trailing sequence fragment (seq2)
        is both the adapter searched for in forward reads and the suffix of
        the sample id.
    '''
    __slots__ = ()

    @property
    def sample_id(self):
        return '{}_{}'.format(self.name, self.seq2)

    @property
    def adapter_seq(self):
        return self.seq2


def parse_barcode_row(line, line_num=None):
    fields = line.strip().split('\t')
    if len(fields) != len(BARCODE_COLUMNS):
        raise BarcodeRowError('line {}: expected {} tab-separated fields, found {}'.format(
            line_num if line_num is not None else '?', len(BARCODE_COLUMNS), len(fields)))
    return SampleDescriptor(*fields)


class BarcodeTable(object):
    ''' A tab-separated sample sheet with a header row and the columns
        name, file_stem, idx1, seq1, idx2, seq2.  Blank lines are ignored;
        rows with the wrong number of fields are kept aside in `rejected`
        as (line number, BarcodeRowError) pairs rather than failing the load.
    '''

    def __init__(self, fname):
        self.fname = str(fname)
        self.rows = []
        self.rejected = []
        self._load()

    def _load(self):
        with util.file.open_or_gzopen(self.fname, 'rt') as inf:
            for line_num, line in enumerate(inf, start=1):
                if line_num == 1 or not line.strip():
                    continue
                try:
                    self.rows.append(parse_barcode_row(line, line_num))
                except BarcodeRowError as e:
                    log.warning("skipping barcode row in %s: %s", self.fname, e)
                    self.rejected.append((line_num, e))
        for sample_id in util.misc.duplicates(self.sample_ids()):
            log.warning("sample id %s appears more than once in %s; its output files will collide",
                        sample_id, self.fname)
        log.debug("read %d barcode rows (%d rejected) from %s", len(self.rows), len(self.rejected), self.fname)

    def sample_ids(self):
        return [row.sample_id for row in self.rows]

    def __iter__(self):
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)


# ==================
# ***  trimming  ***
# ==================

TrimCounts = collections.namedtuple('TrimCounts', ['examined', 'retained'])


def locate_paired_files(file_stem, in_dir='.'):
    ''' Return (forward, reverse) paths for a file stem, preferring
        {stem}_R{1,2}_001.fastq.gz over the uncompressed .fastq name.
    '''
    paths = []
    for read in (1, 2):
        base = os.path.join(in_dir, '{}_R{}_001.fastq'.format(file_stem, read))
        for candidate in (base + '.gz', base):
            if os.path.isfile(candidate):
                paths.append(candidate)
                break
        else:
            raise PairedReadsNotFoundError('no R{} read file for {} in {}'.format(read, file_stem, in_dir))
    return tuple(paths)


def output_fastq_names(sample_id, out_dir):
    return tuple(os.path.join(out_dir, '{}_L001_R{}_001.fastq.gz'.format(sample_id, read)) for read in (1, 2))


def trim_and_write(in_fastq1, in_fastq2, adapter, sample_id, out_dir,
                   offset=util.config.DEFAULTS['adapter_offset']):
    ''' Walk the two read files in lockstep, stopping at the end of the
        shorter one.  A pair is kept only when the forward read carries
        `adapter` exactly at `offset`; the kept forward read loses its first
        offset + len(adapter) bases, the reverse read is written unchanged.
        Other pairs are dropped.  Returns TrimCounts.
    '''
    start = offset
    end = offset + len(adapter)
    out_fastq1, out_fastq2 = output_fastq_names(sample_id, out_dir)
    util.file.mkdir_p(out_dir)

    examined = retained = 0
    with util.file.atomic_output(out_fastq1) as tmp1, util.file.atomic_output(out_fastq2) as tmp2:
        with util.fastq.FastqReader(in_fastq1) as reads1, util.fastq.FastqReader(in_fastq2) as reads2, \
                util.file.open_or_gzopen(tmp1, 'wt') as outf1, util.file.open_or_gzopen(tmp2, 'wt') as outf2:
            for rec1, rec2 in zip(reads1, reads2):
                examined += 1
                if len(rec1.seq) >= end and rec1.seq[start:end] == adapter:
                    util.fastq.write_fastq_record(outf1, rec1.trim_left(end))
                    util.fastq.write_fastq_record(outf2, rec2)
                    retained += 1
                else:
                    log.debug("dropping pair %s: no %s at %d", rec1.id, adapter, start)
    return TrimCounts(examined, retained)


# =============================
# ***  per-sample fan-out   ***
# =============================

DemuxResult = collections.namedtuple(
    'DemuxResult', ['sample_id', 'file_stem', 'succeeded', 'pairs_examined', 'pairs_retained', 'message'])


# This function is called in new processes and must remain at the top level
# of this file to be picklable by concurrent.futures.ProcessPoolExecutor
def demux_one_sample(sample, in_dir, out_dir, offset):
    try:
        in_fastq1, in_fastq2 = locate_paired_files(sample.file_stem, in_dir)
        counts = trim_and_write(in_fastq1, in_fastq2, sample.adapter_seq, sample.sample_id, out_dir, offset=offset)
    except (util.fastq.FastqFormatError, OSError) as e:
        return DemuxResult(sample.sample_id, sample.file_stem, False, 0, 0, str(e))
    return DemuxResult(sample.sample_id, sample.file_stem, True, counts.examined, counts.retained, '')


def run_demux(barcodes, ctx=None):
    ''' Demultiplex every sample of a BarcodeTable in a process pool.
        Returns one DemuxResult per row, rejected rows first, then samples
        in table order.  A failed sample never stops the others.
    '''
    ctx = ctx or util.config.RunContext()
    if ctx.skip_existing and os.path.isfile(ctx.manifest_path()):
        ctx.log.info("%s exists; skipping demultiplexing", ctx.manifest_path())
        return []
    ctx.ensure_out_dir()

    results = [DemuxResult('', '', False, 0, 0, str(err)) for line_num, err in barcodes.rejected]
    samples = list(barcodes)
    sample_results = [None] * len(samples)
    # every barcode row counts toward progress, rejected ones included
    progress = util.misc.ProgressCounter(len(samples) + len(barcodes.rejected), label='barcode rows',
                                         logger=ctx.log)
    for line_num, err in barcodes.rejected:
        progress.increment()
    workers = util.misc.sanitize_thread_count(ctx.threads)
    ctx.log.info("demultiplexing %d samples using %d worker%s", len(samples), workers, 's' if workers != 1 else '')

    with concurrent.futures.ProcessPoolExecutor(max_workers=workers) as executor:
        futures = {}
        for idx, sample in enumerate(samples):
            future = executor.submit(demux_one_sample, sample, ctx.in_dir, ctx.out_dir, ctx.adapter_offset)
            future.add_done_callback(progress.increment)
            futures[future] = idx

        for future in concurrent.futures.as_completed(futures):
            sample = samples[futures[future]]
            try:
                result = future.result()
            except Exception as e:
                result = DemuxResult(sample.sample_id, sample.file_stem, False, 0, 0, 'worker failed: {}'.format(e))
            if result.succeeded:
                ctx.log.info("%s: retained %d of %d read pairs", result.sample_id, result.pairs_retained,
                             result.pairs_examined)
            else:
                ctx.log.warning("%s: failed (%s)", sample.sample_id, result.message)
            sample_results[futures[future]] = result

    results.extend(sample_results)
    passed = sum(1 for r in results if r.succeeded)
    ctx.log.info("demultiplexing finished: %d passed, %d failed", passed, len(results) - passed)
    return results


def write_demux_summary(results, out_tsv):
    with util.file.atomic_output(out_tsv) as tmp_fn:
        with util.file.open_or_gzopen(tmp_fn, 'wt', newline='') as outf:
            writer = csv.writer(outf, delimiter='\t', lineterminator='\n')
            writer.writerow(SUMMARY_HEADER)
            for r in results:
                writer.writerow([r.sample_id, r.file_stem, 'passed' if r.succeeded else 'failed',
                                 r.pairs_examined, r.pairs_retained, r.message])


# ==================
# ***  manifest  ***
# ==================

ManifestEntry = collections.namedtuple('ManifestEntry', ['sample_id', 'forward', 'reverse'])


def build_manifest(barcodes, ctx=None):
    ''' Absolute paths of the demultiplexed outputs of each accepted row,
        in table order.  Raises PairedReadsNotFoundError for a missing file.
    '''
    ctx = ctx or util.config.RunContext()
    for line_num, err in barcodes.rejected:
        ctx.log.warning("manifest: skipping malformed barcode row (%s)", err)
    entries = []
    for sample in barcodes:
        paths = []
        for fname in output_fastq_names(sample.sample_id, ctx.out_dir):
            if not os.path.isfile(fname):
                raise PairedReadsNotFoundError('demultiplexed file {} not found'.format(fname))
            paths.append(os.path.realpath(fname))
        entries.append(ManifestEntry(sample.sample_id, *paths))
    return entries


def write_manifest(entries, out_tsv):
    with util.file.atomic_output(out_tsv) as tmp_fn:
        with open(tmp_fn, 'wt', newline='') as outf:
            writer = csv.writer(outf, delimiter='\t', lineterminator='\n')
            writer.writerow(MANIFEST_HEADER)
            for entry in entries:
                writer.writerow(entry)


# =========================
# ***  command parsers  ***
# =========================


def _context(config, log_file, **overrides):
    return util.config.RunContext.from_config(config, logger=log, log_file=log_file, **overrides)


def _barcode_table(ctx):
    util.cmd.check_input(os.path.isfile(ctx.barcodes_file), 'barcode table {} not found'.format(ctx.barcodes_file))
    return BarcodeTable(ctx.barcodes_file)


def _demux_args(parser, in_dir=True):
    if in_dir:
        parser.add_argument('--inDir', dest='in_dir', default=None,
                            help='Directory holding the {stem}_R1_001.fastq[.gz] input files (config: in_dir, default: .).')
        parser.add_argument('--adapterOffset', dest='adapter_offset', type=int, default=None,
                            help='Position of the adapter in forward reads (config: adapter_offset, default: 4).')
    parser.add_argument('--outDir', dest='out_dir', default=None,
                        help='Output directory (config: out_dir, default: windchime_out).')
    parser.add_argument('--skipExisting', dest='skip_existing', action='store_true', default=None,
                        help='Skip the step when its output already exists (config: skip_existing).')
    arglist = [('loglevel', None), ('version', None), ('config', None), ('log_file', None)]
    if in_dir:
        arglist.append(('threads', None))
    util.cmd.common_args(parser, arglist)
    return parser


def parser_trim_fastq_pair(parser=argparse.ArgumentParser()):
    parser.add_argument('inFastq1', help='Input forward reads (.fastq or .fastq.gz).')
    parser.add_argument('inFastq2', help='Input reverse reads (.fastq or .fastq.gz).')
    parser.add_argument('adapter', help='Adapter sequence expected in forward reads.')
    parser.add_argument('sampleId', help='Output sample id; names the output files.')
    parser.add_argument('--outDir', dest='out_dir', default=None,
                        help='Output directory (config: out_dir, default: windchime_out).')
    parser.add_argument('--adapterOffset', dest='adapter_offset', type=int, default=None,
                        help='Position of the adapter in forward reads (config: adapter_offset, default: 4).')
    util.cmd.common_args(parser, (('loglevel', None), ('version', None), ('config', None), ('log_file', None)))
    util.cmd.attach_main(parser, trim_fastq_pair, split_args=True)
    return parser


def trim_fastq_pair(inFastq1, inFastq2, adapter, sampleId, out_dir=None, adapter_offset=None,
                    config=None, log_file=None):
    ''' Trim one pair of read files: keep read pairs whose forward read has
        the adapter at the fixed offset, writing
        {sampleId}_L001_R{1,2}_001.fastq.gz into the output directory.
    '''
    util.cmd.check_input(adapter, 'adapter sequence must not be empty')
    ctx = _context(config, log_file, out_dir=out_dir, adapter_offset=adapter_offset)
    with ctx.log_sink():
        counts = trim_and_write(inFastq1, inFastq2, adapter, sampleId, ctx.out_dir, offset=ctx.adapter_offset)
        ctx.log.info("%s: retained %d of %d read pairs", sampleId, counts.retained, counts.examined)
    return 0


__commands__.append(('trim_fastq_pair', parser_trim_fastq_pair))


def parser_demux_paired(parser=argparse.ArgumentParser()):
    parser.add_argument('barcodes', nargs='?', default=None,
                        help='Barcode table (config: barcodes_file, default: barcodes.tsv).')
    parser.add_argument('--outSummary', dest='out_summary', default=None,
                        help='Write per-sample results to this TSV file.')
    _demux_args(parser)
    util.cmd.attach_main(parser, demux_paired, split_args=True)
    return parser


def demux_paired(barcodes=None, out_summary=None, in_dir=None, out_dir=None, threads=None,
                 adapter_offset=None, skip_existing=None, config=None, log_file=None):
    ''' Demultiplex every sample of a barcode table in parallel.
        Failed samples are logged and counted; they do not stop the run.
    '''
    ctx = _context(config, log_file, barcodes_file=barcodes, in_dir=in_dir, out_dir=out_dir,
                   threads=threads, adapter_offset=adapter_offset, skip_existing=skip_existing)
    with ctx.log_sink():
        results = run_demux(_barcode_table(ctx), ctx)
        if out_summary:
            write_demux_summary(results, out_summary)
    return 0


__commands__.append(('demux_paired', parser_demux_paired))


def parser_make_manifest(parser=argparse.ArgumentParser()):
    parser.add_argument('barcodes', nargs='?', default=None,
                        help='Barcode table (config: barcodes_file, default: barcodes.tsv).')
    parser.add_argument('--manifest', dest='manifest', default=None,
                        help='Manifest file name within the output directory (config: manifest, default: manifest.tsv).')
    _demux_args(parser, in_dir=False)
    util.cmd.attach_main(parser, make_manifest, split_args=True)
    return parser


def make_manifest(barcodes=None, manifest=None, out_dir=None, skip_existing=None, config=None, log_file=None):
    ''' Write the sample-id / forward / reverse manifest of the
        demultiplexed read files.
    '''
    ctx = _context(config, log_file, barcodes_file=barcodes, manifest=manifest, out_dir=out_dir,
                   skip_existing=skip_existing)
    with ctx.log_sink():
        _make_manifest(ctx)
    return 0


def _make_manifest(ctx):
    out_tsv = ctx.manifest_path()
    if ctx.skip_existing and os.path.isfile(out_tsv):
        ctx.log.info("%s exists; keeping it", out_tsv)
        return
    entries = build_manifest(_barcode_table(ctx), ctx)
    ctx.ensure_out_dir()
    write_manifest(entries, out_tsv)
    ctx.log.info("wrote manifest of %d samples to %s", len(entries), out_tsv)


__commands__.append(('make_manifest', parser_make_manifest))


def parser_demux_and_manifest(parser=argparse.ArgumentParser()):
    parser.add_argument('barcodes', nargs='?', default=None,
                        help='Barcode table (config: barcodes_file, default: barcodes.tsv).')
    parser.add_argument('--manifest', dest='manifest', default=None,
                        help='Manifest file name within the output directory (config: manifest, default: manifest.tsv).')
    parser.add_argument('--outSummary', dest='out_summary', default=None,
                        help='Write per-sample results to this TSV file.')
    _demux_args(parser)
    util.cmd.attach_main(parser, demux_and_manifest, split_args=True)
    return parser


def demux_and_manifest(barcodes=None, manifest=None, out_summary=None, in_dir=None, out_dir=None,
                       threads=None, adapter_offset=None, skip_existing=None, config=None, log_file=None):
    ''' Demultiplex all samples, then write the manifest of their outputs. '''
    ctx = _context(config, log_file, barcodes_file=barcodes, manifest=manifest, in_dir=in_dir,
                   out_dir=out_dir, threads=threads, adapter_offset=adapter_offset, skip_existing=skip_existing)
    with ctx.log_sink():
        results = run_demux(_barcode_table(ctx), ctx)
        if out_summary:
            write_demux_summary(results, out_summary)
        _make_manifest(ctx)
    return 0


__commands__.append(('demux_and_manifest', parser_demux_and_manifest))


# =======================
def full_parser():
    return util.cmd.make_parser(__commands__, __doc__)


if __name__ == '__main__':
    util.cmd.main_argparse(__commands__, __doc__)
