# Unit tests for util.config.py

__author__ = "research@icarai.io"

import logging
import os.path
import tempfile

import pytest

import util.config
import util.file


def test_defaults():
    ctx = util.config.RunContext.from_config()
    assert ctx.out_dir == 'windchime_out'
    assert ctx.in_dir == '.'
    assert ctx.barcodes_file == 'barcodes.tsv'
    assert ctx.manifest_path() == os.path.join('windchime_out', 'manifest.tsv')
    assert ctx.threads is None
    assert ctx.skip_existing is False
    assert ctx.adapter_offset == 4
    assert ctx.taxonomy_prefix == 'pr2_'
    assert ctx.log_sink_path() is None
    assert ctx.log.name == 'windchime'


def test_precedence():
    cfg_fname = os.path.join(tempfile.mkdtemp(), 'windchime.yaml')
    util.file.dump_file(cfg_fname, 'out_dir: from_config\nthreads: 2\nskip_existing: true\n'
                                   'demultiplex_barcodes: legacy.tsv\npipeline_env: qiime2-2024.5\n')
    ctx = util.config.RunContext.from_config(cfg_fname, out_dir='from_cli', threads=None, adapter_offset=0)
    assert ctx.out_dir == 'from_cli'
    assert ctx.threads == 2
    assert ctx.skip_existing is True
    assert ctx.adapter_offset == 0
    assert ctx.barcodes_file == 'legacy.tsv'
    assert ctx.pipeline_env == 'qiime2-2024.5'


def test_unknown_keys_kept():
    ctx = util.config.RunContext.from_config({'classifier': 'pr2.qza'})
    assert ctx.extra == {'classifier': 'pr2.qza'}


def test_invalid_values():
    with pytest.raises(ValueError):
        util.config.RunContext(adapter_offset=-1)
    with pytest.raises(ValueError):
        util.config.RunContext(threads=0)


def test_log_sink():
    out_dir = os.path.join(tempfile.mkdtemp(), 'out')
    ctx = util.config.RunContext(out_dir=out_dir, log_file=True)
    sink = ctx.log_sink_path()
    assert sink == os.path.join(out_dir, 'windchime.log')

    root = logging.getLogger()
    n_handlers = len(root.handlers)
    with ctx.log_sink() as fname:
        assert fname == sink
        assert len(root.handlers) == n_handlers + 1
        ctx.log.warning('demultiplexing finished')
    assert len(root.handlers) == n_handlers
    ctx.log.warning('not in the sink')

    with open(sink, 'rt') as inf:
        lines = inf.read().splitlines()
    assert len(lines) == 1
    assert lines[0].startswith('[')
    assert lines[0].endswith('] WARNING demultiplexing finished')


def test_log_sink_appends():
    sink = os.path.join(tempfile.mkdtemp(), 'run.log')
    ctx = util.config.RunContext(log_file=sink)
    for msg in ('first', 'second'):
        with ctx.log_sink():
            ctx.log.error(msg)
    with open(sink, 'rt') as inf:
        assert [line.split(' ', 2)[2] for line in inf.read().splitlines()] == ['first', 'second']


def test_no_log_sink():
    with util.config.RunContext().log_sink() as fname:
        assert fname is None
