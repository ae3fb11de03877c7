'''This gives a main() function that serves as a wrapper around the
commands in a script and presents several command-line functions from a
single python script.
'''

import sys
import logging
import argparse
import importlib
import inspect
import collections

import util.version

__author__ = "research@icarai.io"
__version__ = util.version.get_version()

log = logging.getLogger()

LOG_FORMAT = "%(asctime)s - %(module)s:%(lineno)d:%(funcName)s - %(levelname)s - %(message)s"

# argparse bookkeeping that is never forwarded to a command function
_NON_COMMAND_ARGS = ('loglevel', 'version', 'func_main', 'command')


def setup_logger(log_level):
    if log_level.upper() == 'EXCEPTION':
        log_level = 'ERROR'
    loglevel = getattr(logging, log_level.upper(), None)
    assert loglevel, "unrecognized log level: %s" % log_level
    log.setLevel(loglevel)
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter(LOG_FORMAT))
    log.addHandler(h)


def common_args(parser, arglist=(('loglevel', None),)):
    for k, v in arglist:
        if k == 'loglevel':
            parser.add_argument("--loglevel",
                                dest="loglevel",
                                help="Verboseness of output.  [default: %(default)s]",
                                default=v or 'INFO',
                                choices=('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL', 'EXCEPTION'))
        elif k == 'threads':
            parser.add_argument('--threads',
                                dest="threads",
                                type=int,
                                help="Number of parallel workers (config: threads, default: {})".format(v or "all available cores"),
                                default=v)
        elif k == 'version':
            parser.add_argument('--version', '-V', action='version', version=v or __version__)
        elif k == 'config':
            parser.add_argument('--config',
                                dest="config",
                                help="""YAML or JSON config file. Values given on the command
                                        line take precedence over values in the file.""",
                                default=v)
        elif k == 'log_file':
            parser.add_argument('--logFile',
                                dest="log_file",
                                help="Also append log messages to this file.",
                                default=v)
        else:
            raise Exception("unrecognized argument %s" % k)
    return parser


def main_command(mainfunc):
    ''' This wraps a python method in another method that can be called
        with an argparse.Namespace object. When called, it will pass all
        the values of the object on as parameters to the function call.
    '''

    def _main(args):
        args2 = dict((k, v) for k, v in vars(args).items() if k not in _NON_COMMAND_ARGS)
        return mainfunc(**args2)

    _main.__doc__ = mainfunc.__doc__
    return _main


def attach_main(parser, cmd_main, split_args=False):
    ''' This attaches the main function call to a parser object.
    '''
    if split_args:
        cmd_main = main_command(cmd_main)
    parser.description = cmd_main.__doc__
    parser.set_defaults(func_main=cmd_main)
    return parser


def make_parser(commands, description):
    ''' commands: a list of pairs containing the following:
            1. name of command (string, no whitespace)
            2. method to call with an ArgumentParser that fills it in and returns it.
        description: a long string to present as a description of your script
            as a whole if the script is run with no arguments
    '''
    parser = argparse.ArgumentParser(description=description, usage='%(prog)s subcommand')
    parser.add_argument('--version', '-V', action='version', version=__version__, help=argparse.SUPPRESS)
    subparsers = parser.add_subparsers(title='subcommands', dest='command')
    for cmd_name, cmd_parser in commands:
        p = subparsers.add_parser(cmd_name, formatter_class=argparse.ArgumentDefaultsHelpFormatter)
        cmd_parser(p)
    return parser


def main_argparse(commands, description):
    parser = make_parser(commands, description)

    # if called with no arguments, print help
    if len(sys.argv) == 1:
        parser.parse_args(['--help'])
    elif len(sys.argv) == 2:
        parser.parse_args([sys.argv[1], '--help'])
    args = parser.parse_args()

    setup_logger(getattr(args, 'loglevel', None) or 'DEBUG')
    log.info("software version: %s, python version: %s", __version__, sys.version)
    log.info("command: %s %s %s", sys.argv[0], sys.argv[1],
             ' '.join(["%s=%s" % (k, v) for k, v in vars(args).items() if k not in ('command', 'func_main')]))

    ret = args.func_main(args)
    if ret is None:
        ret = 0
    return ret


class BadInputError(RuntimeError):

    '''Indicates that an invalid input was given to a command'''

    def __init__(self, reason):
        super(BadInputError, self).__init__(reason)


def check_input(condition, error_msg):
    '''Check input to a command'''
    if not condition:
        raise BadInputError(error_msg)


def parse_cmd(module, cmd, args):
    """Parse arguments `args` to command `cmd` from module `module`."""
    if isinstance(module, str):
        module = importlib.import_module(module)
    assert inspect.ismodule(module)
    parser_fn = dict(getattr(module, '__commands__'))[cmd]
    return parser_fn(argparse.ArgumentParser()).parse_args(list(map(str, args)))


CmdRunInfo = collections.namedtuple('CmdRunInfo', ['result', 'args_parsed'])


def run_cmd(module, cmd, args):
    """Run command after parsing its arguments with the command's parser.

    Args:
        module: the module object for the script containing the command
        cmd: the command name
        args: list of args to the command

    Returns:
        a CmdRunInfo namedtuple with info about the run
    """
    log.info('Calling command {} with args {}'.format(cmd, args))
    args_parsed = parse_cmd(module, cmd, args)
    result = args_parsed.func_main(args_parsed)
    return CmdRunInfo(result=result, args_parsed=args_parsed)
