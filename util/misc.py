'''A few miscellaneous tools. '''
import collections
import collections.abc
import json
import logging
import math
import multiprocessing
import os
import os.path
import re
import threading

import yaml

import util.file

log = logging.getLogger(__name__)

__author__ = "research@icarai.io"

MAX_INT32 = (2 ** 31) - 1


def duplicates(items):
    ''' Return items seen more than once, in order of their second sighting. '''
    seen = set()
    reported = set()
    for i in items:
        if i in seen and i not in reported:
            reported.add(i)
            yield i
        seen.add(i)


class ProgressCounter(object):
    ''' A monotonically increasing count of finished tasks out of a known
        total.  increment() is safe to call from any thread (for example from
        concurrent.futures done-callbacks, which run on executor threads).
    '''

    def __init__(self, total, label='tasks', logger=None):
        self.total = total
        self.label = label
        self._log = logger or log
        self._count = 0
        self._lock = threading.Lock()

    def increment(self, *args):
        with self._lock:
            self._count += 1
            count = self._count
        self._log.info("processed %d/%d %s", count, self.total, self.label)
        return count

    @property
    def count(self):
        with self._lock:
            return self._count


def available_cpu_count():
    """
    Return the number of available virtual or physical CPUs on this system.
    The number of available CPUs can be smaller than the total number of CPUs
    when the cpuset(7) mechanism or a cgroup CPU quota is in use, as is the
    case on some cluster systems and in containers.
    """

    cgroup_cpus = MAX_INT32
    try:
        if os.path.exists("/sys/fs/cgroup/cpu.max"):
            cpu_max = util.file.slurp_file("/sys/fs/cgroup/cpu.max").split()
            if cpu_max and cpu_max[0] != "max":
                quota = int(cpu_max[0])
                period = int(cpu_max[1]) if len(cpu_max) > 1 else 100000
                if quota > 0 and period > 0:
                    cgroup_cpus = max(1, int(math.ceil(quota / period)))
    except (OSError, ValueError):
        pass

    proc_cpus = MAX_INT32
    try:
        m = re.search(r'(?m)^Cpus_allowed:\s*(.*)$', util.file.slurp_file('/proc/self/status'))
        if m:
            res = bin(int(m.group(1).replace(',', ''), 16)).count('1')
            if res > 0:
                proc_cpus = res
    except (OSError, ValueError):
        pass

    log.debug('cgroup_cpus %d, proc_cpus %d, multiprocessing cpus %d',
              cgroup_cpus, proc_cpus, multiprocessing.cpu_count())
    return min(cgroup_cpus, proc_cpus, multiprocessing.cpu_count())


def sanitize_thread_count(threads=None):
    ''' Given a user specified thread count, this function will:
        - ensure that 1 <= threads <= available_cpu_count()
        - interpret None values to mean max available cpus
            unless PYTEST_XDIST_WORKER_COUNT is defined as an environment
            variable, in which case we always return 1
    '''
    if 'PYTEST_XDIST_WORKER_COUNT' in os.environ:
        threads = 1

    max_cores = available_cpu_count()

    if threads is None:
        threads = max_cores

    assert type(threads) == int

    return max(1, min(threads, max_cores))


def is_nonstr_iterable(x, str_types=str):
    '''Tests whether `x` is an Iterable other than a string.  `str_types` gives the type(s) to treat as strings.'''
    return isinstance(x, collections.abc.Iterable) and not isinstance(x, str_types)


def make_seq(x, str_types=str):
    '''Return a tuple containing the items in `x`, or containing just `x` if `x` is a non-string iterable.'''
    return tuple(x) if is_nonstr_iterable(x, str_types) else (x,)


def load_yaml_or_json(fname):
    '''Load a dictionary from either a yaml or a json file'''
    with open(fname) as f:
        if fname.upper().endswith(('.YAML', '.YML')):
            return yaml.safe_load(f) or {}
        if fname.upper().endswith('.JSON'):
            return json.load(f) or {}
        raise TypeError('Unsupported dict file format: ' + fname)


def _update_config(config, overwrite_config):
    '''Recursively update dict `config` with the items of `overwrite_config`.'''
    for key, value in overwrite_config.items():
        if isinstance(value, collections.abc.Mapping):
            config[key] = _update_config(dict(config.get(key) or {}), value)
        else:
            config[key] = value
    return config


def load_config(cfg, include_directive='include', param_renamings=None):
    '''Load a configuration mapping.

    `cfg` is either a dict or the name of a yaml/json file containing one.
    The mapping may list further config files under `include_directive`;
    relative names are resolved against the directory of the including
    file.  Values from the including config override included ones, and
    later includes override earlier ones.

    `param_renamings` maps legacy top-level parameter names to current
    ones, e.g. {'demultiplex_barcodes': 'barcodes_file'}; a legacy value is
    used only when the current name is absent.
    '''
    param_renamings = param_renamings or {}

    base_dir_for_includes = None
    if isinstance(cfg, str):
        cfg_fname = os.path.realpath(cfg)
        base_dir_for_includes = os.path.dirname(cfg_fname)
        cfg = load_yaml_or_json(cfg_fname)
    if not isinstance(cfg, collections.abc.Mapping):
        raise TypeError('Config must be a mapping, not {}'.format(type(cfg).__name__))

    result = {}
    for included_cfg_fname in make_seq(cfg.get(include_directive) or []):
        if (not os.path.isabs(included_cfg_fname)) and base_dir_for_includes:
            included_cfg_fname = os.path.join(base_dir_for_includes, included_cfg_fname)
        _update_config(result, load_config(included_cfg_fname,
                                           include_directive=include_directive,
                                           param_renamings=param_renamings))
    _update_config(result, dict((k, v) for k, v in cfg.items() if k != include_directive))

    for old_param, new_param in param_renamings.items():
        if old_param in result:
            old_val = result.pop(old_param)
            if new_param not in result:
                result[new_param] = old_val
                log.warning('Config param {} has been renamed to {}; old name accepted for now'.format(old_param, new_param))

    return result


def chk(condition, message='Check failed', exc=RuntimeError):
    """Check a condition, raise an exception if condition is False."""
    if not condition:
        raise exc(message)

