import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from enum import Enum, auto

import click
import tzlocal

from pdfsigcheck import __version__
from pdfsigcheck.config import (
    CLIConfig,
    LogConfig,
    StdLogOutput,
    parse_cli_config,
    parse_logging_config,
)
from pdfsigcheck.pdf_utils import misc
from pdfsigcheck.pdf_utils.config_utils import ConfigurationError
from pdfsigcheck.pdf_utils.misc import isoparse
from pdfsigcheck.sign import fields
from pdfsigcheck.sign.certinfo import CertificateInputError, inspect_certificate
from pdfsigcheck.sign.validation import (
    OverallStatus,
    generate_report,
    report_to_json,
    verify_pdf_batch,
    verify_pdf_signatures,
)

__all__ = ['cli']


logger = logging.getLogger(__name__)


class NoStackTraceFormatter(logging.Formatter):
    def formatException(self, ei) -> str:
        return ""


LOG_FORMAT_STRING = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def logging_setup(log_configs, verbose: bool):
    log_config: LogConfig
    for module, log_config in log_configs.items():
        cur_logger = logging.getLogger(module)
        cur_logger.setLevel(log_config.level)
        if isinstance(log_config.output, StdLogOutput):
            if log_config.output == StdLogOutput.STDOUT:
                handler = logging.StreamHandler(sys.stdout)
            else:
                handler = logging.StreamHandler()
            # when logging to the console, don't output stack traces
            # unless in verbose mode
            if verbose:
                formatter = logging.Formatter(LOG_FORMAT_STRING)
            else:
                formatter = NoStackTraceFormatter(LOG_FORMAT_STRING)
        else:
            handler = logging.FileHandler(log_config.output)
            formatter = logging.Formatter(LOG_FORMAT_STRING)
        handler.setFormatter(formatter)
        cur_logger.addHandler(handler)


@contextmanager
def pdfsigcheck_exception_manager():
    msg = exception = None
    try:
        yield
    except click.ClickException:
        raise
    except misc.PdfReadError as e:
        exception = e
        msg = f"Failed to read PDF file: {e.msg}"
    except CertificateInputError as e:
        exception = e
        msg = e.failure_message
    except ConfigurationError as e:
        exception = e
        msg = f"Configuration problem: {e}"
    except OSError as e:
        exception = e
        msg = f"I/O error: {e}"
    except Exception as e:
        exception = e
        msg = "Generic processing error."

    if exception is not None:
        logger.error(msg, exc_info=exception)
        raise click.ClickException(msg)


DEFAULT_CONFIG_FILE = 'pdfsigcheck.yml'


class Ctx(Enum):
    CLI_CONFIG = auto()


@click.group()
@click.version_option(prog_name='pdfsigcheck', version=__version__)
@click.option('--config',
              help=(
                  'YAML file to load configuration from'
                  f'[default: {DEFAULT_CONFIG_FILE}]'
              ), required=False, type=click.File('r'))
@click.option('--verbose', help='Run in verbose mode', required=False,
              default=False, type=bool, is_flag=True)
@click.pass_context
def cli(ctx, config, verbose):
    config_text = None
    if config is None:
        try:
            with open(DEFAULT_CONFIG_FILE, 'r') as f:
                config_text = f.read()
            config = DEFAULT_CONFIG_FILE
        except FileNotFoundError:
            pass
        except IOError as e:
            raise click.ClickException(
                f"Failed to read {DEFAULT_CONFIG_FILE}: {str(e)}"
            )
    else:
        try:
            config_text = config.read()
        except IOError as e:
            raise click.ClickException(
                f"Failed to read configuration: {str(e)}",
            )

    ctx.ensure_object(dict)
    if config_text is not None:
        try:
            ctx.obj[Ctx.CLI_CONFIG] = cfg = parse_cli_config(config_text)
        except ConfigurationError as e:
            raise click.ClickException(f"Configuration problem: {e}")
        log_config = cfg.log_config
    else:
        ctx.obj[Ctx.CLI_CONFIG] = CLIConfig()
        # grab the default
        log_config = parse_logging_config({})

    if verbose:
        # override the root logger's logging level, but preserve the output
        root_logger_config = log_config[None]
        log_config[None] = LogConfig(
            level=logging.DEBUG, output=root_logger_config.output
        )

    logging_setup(log_config, verbose)

    if verbose:
        logging.debug("Running with --verbose")
    if config_text is not None:
        logging.debug(f'Finished reading configuration from {config}.')
    else:
        logging.debug('There was no configuration to parse.')


readable_file = click.Path(exists=True, readable=True, dir_okay=False)


def _attempt_iso_dt_parse(dt_str) -> datetime:
    try:
        dt = isoparse(dt_str)
    except ValueError:
        raise click.ClickException(f"datetime {dt_str!r} could not be parsed")
    return dt


def _signature_lines(doc, pretty_print, executive_summary):
    if executive_summary:
        yield doc.status.value.upper()
        return
    if doc.message:
        yield doc.message
    for ix, sig in enumerate(doc.signatures):
        if pretty_print:
            header = f'Field {ix + 1}: {sig.field_name}'
            line = '=' * len(header)
            yield '%s\n%s\n%s\n\n%s' % (
                line, header, line, sig.pretty_print_details()
            )
        else:
            yield sig.summary()


@cli.command(name='verify', help='verify the signatures in PDF files')
@click.argument('infiles', nargs=-1, required=True,
                type=click.Path(dir_okay=False))
@click.option('--executive-summary',
              help='only print final judgment on the validity of each file',
              type=bool, is_flag=True, default=False, show_default=True)
@click.option('--pretty-print',
              help='render a prettier summary for the signatures in the file',
              type=bool, is_flag=True, default=False, show_default=True)
@click.option('--json', 'as_json',
              help='print the verification results as JSON',
              type=bool, is_flag=True, default=False, show_default=True)
@click.option('--validation-time',
              help='Override the validation time (ISO 8601 date).',
              type=str, required=False)
@click.option('--jobs', help='number of files to verify in parallel',
              type=click.IntRange(min=1), required=False)
@click.pass_context
def verify_signatures(ctx, infiles, executive_summary, pretty_print, as_json,
                      validation_time, jobs):
    if sum((executive_summary, pretty_print, as_json)) > 1:
        raise click.ClickException(
            "--pretty-print, --executive-summary and --json are mutually "
            "exclusive."
        )
    moment = None
    if validation_time is not None:
        moment = _attempt_iso_dt_parse(validation_time)

    cli_config: CLIConfig = ctx.obj[Ctx.CLI_CONFIG]
    with pdfsigcheck_exception_manager():
        docs = verify_pdf_batch(
            infiles, max_workers=jobs, settings=cli_config.verification,
            moment=moment
        )
        if as_json:
            output = [
                {'file': name, 'documentStatus': doc.status.value,
                 **doc.as_dict()}
                for name, doc in zip(infiles, docs)
            ]
            print(report_to_json(
                output[0] if len(output) == 1 else output,
                indent=cli_config.report_indent
            ))
        else:
            for name, doc in zip(infiles, docs):
                for line in _signature_lines(doc, pretty_print,
                                             executive_summary):
                    print(f'{name}:{line}' if len(infiles) > 1 else line)

    all_ok = all(
        doc.status in (OverallStatus.VALID, OverallStatus.NONE)
        for doc in docs
    )
    if not all_ok:
        raise click.ClickException("Validation failed")


@cli.command(name='report', help='write a JSON verification report')
@click.argument('infile', type=readable_file)
@click.option('-o', '--outfile', type=click.File('w'), default='-',
              help='file to write the report to [default: stdout]')
@click.option('--validation-time',
              help='Override the validation time (ISO 8601 date).',
              type=str, required=False)
@click.pass_context
def write_report(ctx, infile, outfile, validation_time):
    moment = None
    if validation_time is not None:
        moment = _attempt_iso_dt_parse(validation_time)
    cli_config: CLIConfig = ctx.obj[Ctx.CLI_CONFIG]
    with pdfsigcheck_exception_manager():
        with open(infile, 'rb') as inf:
            data = inf.read()
        doc = verify_pdf_signatures(
            data, settings=cli_config.verification, moment=moment
        )
        report = generate_report(
            click.format_filename(infile, shorten=True), doc,
            generated_at=datetime.now(tz=tzlocal.get_localzone())
        )
        outfile.write(
            report_to_json(report, indent=cli_config.report_indent)
        )
        outfile.write('\n')


def _format_attrs(attrs: dict) -> str:
    return ', '.join(f'{k}={v}' for k, v in attrs.items())


@cli.command(name='inspect-cert', help='inspect a certificate file')
@click.argument('infile', type=readable_file)
@click.option('--json', 'as_json', help='print the result as JSON',
              type=bool, is_flag=True, default=False, show_default=True)
@click.pass_context
def inspect_cert(ctx, infile, as_json):
    cli_config: CLIConfig = ctx.obj[Ctx.CLI_CONFIG]
    with pdfsigcheck_exception_manager():
        with open(infile, 'rb') as inf:
            data = inf.read()
        inspection = inspect_certificate(data)
        info = inspection.as_dict()
        if as_json:
            print(report_to_json(info, indent=cli_config.report_indent))
            return
        print(f"Subject: {_format_attrs(info['subject'])}")
        print(f"Issuer: {_format_attrs(info['issuer'])}")
        print(f"Serial number: {info['serialNumber']}")
        print(f"Valid from: {info['validFrom'].isoformat()}")
        print(f"Valid to: {info['validTo'].isoformat()}")
        print(f"Expired: {'yes' if info['isExpired'] else 'no'}")
        print(f"Self-signed: {'yes' if info['isSelfSigned'] else 'no'}")
        print(f"SHA256 fingerprint: {info['fingerprint']}")
        key_size = info['keySize']
        print(
            f"Public key: {info['publicKeyAlgorithm']}"
            + (f" ({key_size} bits)" if key_size else "")
        )
        for ext in info['extensions']:
            critical = ' [critical]' if ext['critical'] else ''
            print(f"Extension {ext['name']}{critical}: {ext['value']}")


@cli.command(name='list', help='list signature fields')
@click.argument('infile', type=readable_file)
def list_sigfields(infile):
    with pdfsigcheck_exception_manager():
        with open(infile, 'rb') as inf:
            data = inf.read()
        for name in fields.list_signature_field_names(data):
            print(name)
