'''Run configuration: defaults, config-file loading, and the RunContext
object that carries settings and the reporting logger into each component
call.
'''

__author__ = "research@icarai.io"

import contextlib
import logging
import os
import os.path

import util.file
import util.misc

log = logging.getLogger(__name__)

DEFAULT_LOG_FILE_NAME = 'windchime.log'
LOG_SINK_FORMAT = '[%(asctime)s] %(levelname)s %(message)s'
LOG_SINK_DATEFMT = '%Y-%m-%dT%H:%M:%S%z'

DEFAULTS = {
    'out_dir': 'windchime_out',
    'in_dir': '.',
    'barcodes_file': 'barcodes.tsv',
    'manifest': 'manifest.tsv',
    'threads': None,
    'skip_existing': False,
    'adapter_offset': 4,
    'taxonomy_prefix': 'pr2_',
    'log_file': None,
    'pipeline_env': None,
}

PARAM_RENAMINGS = {
    'demultiplex_barcodes': 'barcodes_file',
}


def load_settings(config=None, **overrides):
    ''' Merge DEFAULTS, then the config file or mapping `config`, then any
        keyword overrides whose value is not None.  Unknown config keys are
        kept (and logged) so that the orchestration layer can carry its own.
    '''
    settings = dict(DEFAULTS)
    if config is not None:
        loaded = util.misc.load_config(config, param_renamings=PARAM_RENAMINGS)
        for k in loaded:
            if k not in DEFAULTS:
                log.debug("config key %s is not used by this package", k)
        settings.update(loaded)
    settings.update((k, v) for k, v in overrides.items() if v is not None)
    return settings


class RunContext(object):
    ''' Settings for one command invocation.  Components take a RunContext
        (or None, meaning all defaults) instead of reading any global state.
    '''

    def __init__(self, out_dir=DEFAULTS['out_dir'], in_dir=DEFAULTS['in_dir'],
                 barcodes_file=DEFAULTS['barcodes_file'], manifest=DEFAULTS['manifest'],
                 threads=None, skip_existing=False, adapter_offset=DEFAULTS['adapter_offset'],
                 taxonomy_prefix=DEFAULTS['taxonomy_prefix'], log_file=None, pipeline_env=None,
                 logger=None, **extra):
        util.misc.chk(isinstance(adapter_offset, int) and adapter_offset >= 0,
                      'adapter_offset must be a non-negative integer, not {!r}'.format(adapter_offset),
                      exc=ValueError)
        util.misc.chk(threads is None or (isinstance(threads, int) and threads > 0),
                      'threads must be a positive integer, not {!r}'.format(threads),
                      exc=ValueError)
        self.out_dir = str(out_dir)
        self.in_dir = str(in_dir)
        self.barcodes_file = barcodes_file
        self.manifest = manifest
        self.threads = threads
        self.skip_existing = bool(skip_existing)
        self.adapter_offset = adapter_offset
        self.taxonomy_prefix = taxonomy_prefix
        self.log_file = log_file
        self.pipeline_env = pipeline_env
        self.log = logger or logging.getLogger('windchime')
        self.extra = extra

    @classmethod
    def from_config(cls, config=None, logger=None, **overrides):
        return cls(logger=logger, **load_settings(config, **overrides))

    def out_path(self, *parts):
        return os.path.join(self.out_dir, *parts)

    def manifest_path(self):
        return self.out_path(self.manifest)

    def ensure_out_dir(self):
        util.file.mkdir_p(self.out_dir)
        return self.out_dir

    def log_sink_path(self):
        ''' `log_file: true` in a config selects windchime.log in out_dir. '''
        if self.log_file is True:
            return self.out_path(DEFAULT_LOG_FILE_NAME)
        return self.log_file or None

    @contextlib.contextmanager
    def log_sink(self):
        ''' Append log records to the log sink file, if one is configured,
            for the duration of the block.
        '''
        fname = self.log_sink_path()
        if not fname:
            yield None
            return
        sink_dir = os.path.dirname(os.path.abspath(fname))
        util.file.mkdir_p(sink_dir)
        handler = logging.FileHandler(fname, mode='a')
        handler.setFormatter(logging.Formatter(LOG_SINK_FORMAT, datefmt=LOG_SINK_DATEFMT))
        root = logging.getLogger()
        root.addHandler(handler)
        try:
            yield fname
        finally:
            root.removeHandler(handler)
            handler.close()
