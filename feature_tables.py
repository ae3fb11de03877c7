#!/usr/bin/env python
"""
Utilities for feature (ASV) count tables: BIOM to TSV conversion and
joining taxonomy assignments onto a count table.
"""

__author__ = "research@icarai.io"
__commands__ = []

import argparse
import csv
import json
import logging
import math
import os
import os.path
import sys

import numpy

import util.cmd
import util.config
import util.file

log = logging.getLogger(__name__)

FEATURE_ID_HEADER = 'Feature ID'
MERGED_KEY_HEADER = 'Feature.ID'


class BiomSchemaError(ValueError):
    '''Indicates a BIOM document that does not describe a valid table'''


class TableFormatError(ValueError):
    '''Indicates a tab-separated table that cannot be keyed by its first column'''


# =========================
# ***  BIOM conversion  ***
# =========================


def _is_number(x):
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _is_index(x):
    return isinstance(x, int) and not isinstance(x, bool) and x >= 0


def _reject_constant(name):
    raise BiomSchemaError('non-finite number {} in BIOM document'.format(name))


def _finite_value(value, where):
    ''' value as a finite float; literals like 1e400 or integers past the
        float range raise BiomSchemaError.
    '''
    try:
        value = float(value)
    except OverflowError as e:
        raise BiomSchemaError('value out of range {}'.format(where)) from e
    if not math.isfinite(value):
        raise BiomSchemaError('non-finite value {}'.format(where))
    return value


def format_value(value):
    ''' Integral values (within machine epsilon) print as bare integers;
        anything else prints as the shortest positional decimal that
        round-trips, e.g. 2.5 or 0.0000001.
    '''
    value = float(value)
    if abs(value - math.trunc(value)) < sys.float_info.epsilon:
        return str(int(value))
    return numpy.format_float_positional(value, trim='-')


class BiomTable(object):
    ''' A BIOM 1.0 (JSON) feature table: row (feature) ids, column (sample)
        ids, and its values as (row, col, value) entries.  Dense documents
        are read into the same entry form.
    '''

    def __init__(self, row_ids, col_ids, entries):
        self.row_ids = list(row_ids)
        self.col_ids = list(col_ids)
        self.entries = list(entries)

    @property
    def shape(self):
        return (len(self.row_ids), len(self.col_ids))

    @classmethod
    def load(cls, fname):
        with util.file.open_or_gzopen(fname, 'rt') as inf:
            try:
                doc = json.load(inf, parse_constant=_reject_constant)
            except json.JSONDecodeError as e:
                raise BiomSchemaError('{} is not valid JSON: {}'.format(fname, e)) from e
        return cls.from_json(doc)

    @classmethod
    def from_json(cls, doc):
        if not isinstance(doc, dict):
            raise BiomSchemaError('BIOM document must be a JSON object')
        for key in ('shape', 'data', 'rows', 'columns'):
            if key not in doc:
                raise BiomSchemaError('BIOM document has no "{}" field'.format(key))

        shape = doc['shape']
        if not isinstance(shape, list) or len(shape) != 2:
            raise BiomSchemaError('"shape" must have exactly two elements, not {!r}'.format(shape))
        if not all(_is_index(n) for n in shape):
            raise BiomSchemaError('"shape" must hold two non-negative integers, not {!r}'.format(shape))
        n_rows, n_cols = shape

        row_ids = cls._ids(doc['rows'], 'rows')
        col_ids = cls._ids(doc['columns'], 'columns')
        if n_rows != len(row_ids) or n_cols != len(col_ids):
            raise BiomSchemaError('"shape" {}x{} does not match {} rows and {} columns'.format(
                n_rows, n_cols, len(row_ids), len(col_ids)))

        matrix_type = doc.get('matrix_type') or 'sparse'
        if matrix_type == 'sparse':
            entries = cls._sparse_entries(doc['data'], n_rows, n_cols)
        elif matrix_type == 'dense':
            entries = cls._dense_entries(doc['data'], n_rows, n_cols)
        else:
            raise BiomSchemaError('unsupported matrix_type {!r}'.format(matrix_type))
        return cls(row_ids, col_ids, entries)

    @staticmethod
    def _ids(items, field):
        if not isinstance(items, list):
            raise BiomSchemaError('"{}" must be a list'.format(field))
        ids = []
        for item in items:
            if not isinstance(item, dict) or not isinstance(item.get('id'), str):
                raise BiomSchemaError('every entry of "{}" needs a string "id"'.format(field))
            ids.append(item['id'])
        return ids

    @staticmethod
    def _sparse_entries(data, n_rows, n_cols):
        if not isinstance(data, list):
            raise BiomSchemaError('"data" must be a list')
        entries = []
        for entry in data:
            if not isinstance(entry, list) or len(entry) != 3:
                raise BiomSchemaError('data entry {!r} does not have three elements'.format(entry))
            row, col, value = entry
            if not _is_index(row):
                raise BiomSchemaError('invalid row index in data entry {!r}'.format(entry))
            if not _is_index(col):
                raise BiomSchemaError('invalid column index in data entry {!r}'.format(entry))
            if not _is_number(value):
                raise BiomSchemaError('invalid value in data entry {!r}'.format(entry))
            if row >= n_rows or col >= n_cols:
                raise BiomSchemaError('data entry {!r} is out of bounds for shape {}x{}'.format(
                    entry, n_rows, n_cols))
            entries.append((row, col, _finite_value(value, 'in data entry {!r}'.format(entry))))
        return entries

    @staticmethod
    def _dense_entries(data, n_rows, n_cols):
        if not isinstance(data, list) or len(data) != n_rows:
            raise BiomSchemaError('dense "data" must hold {} rows'.format(n_rows))
        entries = []
        for i, values in enumerate(data):
            if not isinstance(values, list) or len(values) != n_cols:
                raise BiomSchemaError('dense row {} must hold {} values'.format(i, n_cols))
            for j, value in enumerate(values):
                if not _is_number(value):
                    raise BiomSchemaError('invalid value {!r} at row {}, column {}'.format(value, i, j))
                entries.append((i, j, _finite_value(value, 'at row {}, column {}'.format(i, j))))
        return entries

    def to_dense(self):
        ''' A rows x columns float matrix, zero where no entry is given.
            Repeated coordinates are assigned in order, so the last one wins.
        '''
        matrix = numpy.zeros(self.shape, dtype=numpy.float64)
        for row, col, value in self.entries:
            matrix[row, col] = value
        return matrix

    def write_tsv(self, out_tsv):
        matrix = self.to_dense()
        with util.file.atomic_output(out_tsv) as tmp_fn:
            with util.file.open_or_gzopen(tmp_fn, 'wt', newline='') as outf:
                writer = csv.writer(outf, delimiter='\t', lineterminator='\n')
                writer.writerow([FEATURE_ID_HEADER] + self.col_ids)
                for row_id, values in zip(self.row_ids, matrix):
                    writer.writerow([row_id] + [format_value(v) for v in values])


def convert_biom(in_biom, out_tsv):
    table = BiomTable.load(in_biom)
    out_dir = os.path.dirname(out_tsv)
    if out_dir:
        util.file.mkdir_p(out_dir)
    table.write_tsv(out_tsv)
    log.info("converted %s (%d features x %d samples) to %s", in_biom, table.shape[0], table.shape[1], out_tsv)
    return table.shape


def parser_biom_to_tsv(parser=argparse.ArgumentParser()):
    parser.add_argument('inBiom', help='Input BIOM 1.0 JSON table (optionally gzipped).')
    parser.add_argument('outTsv', help='Output dense tab-separated table.')
    parser.add_argument('--skipExisting', dest='skip_existing', action='store_true', default=None,
                        help='Do nothing if outTsv already exists (config: skip_existing).')
    util.cmd.common_args(parser, (('loglevel', None), ('version', None), ('config', None), ('log_file', None)))
    util.cmd.attach_main(parser, biom_to_tsv, split_args=True)
    return parser


def biom_to_tsv(inBiom, outTsv, skip_existing=None, config=None, log_file=None):
    ''' Convert a sparse (or dense) BIOM JSON feature table to a dense TSV
        whose header is "Feature ID" followed by the sample ids.
    '''
    ctx = util.config.RunContext.from_config(config, logger=log, log_file=log_file, skip_existing=skip_existing)
    with ctx.log_sink():
        if ctx.skip_existing and os.path.isfile(outTsv):
            ctx.log.info("%s exists; skipping conversion", outTsv)
            return 0
        convert_biom(inBiom, outTsv)
    return 0


__commands__.append(('biom_to_tsv', parser_biom_to_tsv))


# ======================
# ***  taxonomy join ***
# ======================


def read_keyed_table(fname):
    ''' Read a tab-separated table into (header, {first field: row}).

        A line whose first field is "#" followed by whitespace (or a lone
        "#") is a comment.  Before the header, a line like "#OTU ID\t..." is
        the header with its "#" removed; after it, "#" lines such as
        "#q2:types" are skipped.  A repeated key keeps its first position
        and takes the content of its last row.
    '''
    header = None
    rows = {}
    with util.file.open_or_gzopen(fname, 'rt', newline='') as inf:
        for line_num, row in enumerate(csv.reader(inf, delimiter='\t'), start=1):
            if not row or row == ['']:
                continue
            first = row[0]
            if first.startswith('#'):
                if header is None and len(first) > 1 and not first[1].isspace():
                    header = [first[1:]] + row[1:]
                continue
            if header is None:
                header = row
                continue
            if len(row) != len(header):
                raise TableFormatError('{} line {}: {} fields, header has {}'.format(
                    fname, line_num, len(row), len(header)))
            rows[first] = row
    if header is None:
        raise TableFormatError('{} has no header row'.format(fname))
    return header, rows


def merge_tables(in_counts, in_taxonomy, out_tsv, prefix=util.config.DEFAULTS['taxonomy_prefix']):
    ''' Left join of the taxonomy table onto the count table by feature id.
        Returns the number of rows written.
    '''
    counts_header, counts = read_keyed_table(in_counts)
    tax_header, taxonomy = read_keyed_table(in_taxonomy)
    log.debug("read %d count rows and %d taxonomy rows", len(counts), len(taxonomy))

    header = [MERGED_KEY_HEADER] + counts_header[1:] + [prefix + col for col in tax_header[1:]]
    missing = [''] * (len(tax_header) - 1)
    unmatched = 0

    out_dir = os.path.dirname(out_tsv)
    if out_dir:
        util.file.mkdir_p(out_dir)
    with util.file.atomic_output(out_tsv) as tmp_fn:
        with util.file.open_or_gzopen(tmp_fn, 'wt', newline='') as outf:
            writer = csv.writer(outf, delimiter='\t', lineterminator='\n')
            writer.writerow(header)
            for feature_id, row in counts.items():
                tax_row = taxonomy.get(feature_id)
                if tax_row is None:
                    unmatched += 1
                    writer.writerow(row + missing)
                else:
                    writer.writerow(row + tax_row[1:])
    log.info("merged %d features into %s (%d without taxonomy)", len(counts), out_tsv, unmatched)
    return len(counts)


def parser_merge_taxonomy(parser=argparse.ArgumentParser()):
    parser.add_argument('inCounts', help='Feature count table (TSV, feature id in the first column).')
    parser.add_argument('inTaxonomy', help='Taxonomy table (TSV, feature id in the first column).')
    parser.add_argument('outTsv', help='Output merged table.')
    parser.add_argument('--prefix', dest='prefix', default=None,
                        help='Prefix for taxonomy column names (config: taxonomy_prefix, default: pr2_).')
    parser.add_argument('--skipExisting', dest='skip_existing', action='store_true', default=None,
                        help='Do nothing if outTsv already exists (config: skip_existing).')
    util.cmd.common_args(parser, (('loglevel', None), ('version', None), ('config', None), ('log_file', None)))
    util.cmd.attach_main(parser, merge_taxonomy, split_args=True)
    return parser


def merge_taxonomy(inCounts, inTaxonomy, outTsv, prefix=None, skip_existing=None, config=None, log_file=None):
    ''' Add taxonomy columns to a feature count table.  Every feature of
        the count table is kept; features without a taxonomy assignment get
        empty taxonomy columns, and taxonomy-only features are dropped.
    '''
    ctx = util.config.RunContext.from_config(config, logger=log, log_file=log_file,
                                             taxonomy_prefix=prefix, skip_existing=skip_existing)
    with ctx.log_sink():
        if ctx.skip_existing and os.path.isfile(outTsv):
            ctx.log.info("%s exists; skipping merge", outTsv)
            return 0
        merge_tables(inCounts, inTaxonomy, outTsv, prefix=ctx.taxonomy_prefix)
    return 0


__commands__.append(('merge_taxonomy', parser_merge_taxonomy))


# =======================
def full_parser():
    return util.cmd.make_parser(__commands__, __doc__)


if __name__ == '__main__':
    util.cmd.main_argparse(__commands__, __doc__)
