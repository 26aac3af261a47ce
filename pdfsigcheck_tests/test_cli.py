import json
from hashlib import sha256

import pytest
from click.testing import CliRunner

from pdfsigcheck.cli import cli
from pdfsigcheck.sign.validation.pdf_embedded import NO_SIGNATURES_MESSAGE
from pdfsigcheck_tests.samples import (
    EC_SIGNER_CERT,
    EXPIRED_SIGNER,
    SIGNED_PDF,
    SIGNER_CERT,
    TWO_SIGNATURES_PDF,
    UNSIGNED_PDF,
    pem_armor,
    signed_pdf,
    tamper,
)

SIGNED_PATH = 'signed.pdf'
UNSIGNED_PATH = 'unsigned.pdf'
TAMPERED_PATH = 'tampered.pdf'
EXPIRED_PATH = 'expired.pdf'
TWO_SIGNATURES_PATH = 'two-signatures.pdf'


@pytest.fixture
def cli_runner():
    runner = CliRunner()
    with runner.isolated_filesystem():
        for path, data in ((SIGNED_PATH, SIGNED_PDF),
                           (UNSIGNED_PATH, UNSIGNED_PDF),
                           (TAMPERED_PATH, tamper(SIGNED_PDF)),
                           (EXPIRED_PATH, signed_pdf(EXPIRED_SIGNER)),
                           (TWO_SIGNATURES_PATH, TWO_SIGNATURES_PDF)):
            with open(path, 'wb') as outf:
                outf.write(data)
        yield runner


def _fingerprint(cert):
    return sha256(cert.dump()).hexdigest()


def test_cli_verify(cli_runner):
    result = cli_runner.invoke(cli, ['verify', SIGNED_PATH])
    assert result.exit_code == 0, result.output
    assert f'Signature1:{_fingerprint(SIGNER_CERT)}:VALID' in result.output


def test_cli_verify_tampered(cli_runner):
    result = cli_runner.invoke(cli, ['verify', TAMPERED_PATH])
    assert result.exit_code == 1
    assert 'TAMPERED' in result.output
    assert 'Validation failed' in result.output


def test_cli_verify_executive_summary(cli_runner):
    result = cli_runner.invoke(
        cli, ['verify', '--executive-summary', SIGNED_PATH]
    )
    assert result.exit_code == 0, result.output
    assert result.output.strip() == 'VALID'


def test_cli_verify_unsigned(cli_runner):
    result = cli_runner.invoke(cli, ['verify', UNSIGNED_PATH])
    assert result.exit_code == 0, result.output
    assert NO_SIGNATURES_MESSAGE in result.output


def test_cli_verify_validation_time(cli_runner):
    result = cli_runner.invoke(cli, ['verify', EXPIRED_PATH])
    assert result.exit_code == 1
    assert 'EXPIRED' in result.output

    result = cli_runner.invoke(
        cli, ['verify', '--validation-time', '2020-06-01', EXPIRED_PATH]
    )
    assert result.exit_code == 0, result.output
    assert 'VALID' in result.output


def test_cli_verify_bad_validation_time(cli_runner):
    result = cli_runner.invoke(
        cli, ['verify', '--validation-time', 'yesterday', SIGNED_PATH]
    )
    assert result.exit_code == 1
    assert "datetime 'yesterday' could not be parsed" in result.output


def test_cli_verify_pretty_print(cli_runner):
    result = cli_runner.invoke(
        cli, ['verify', '--pretty-print', TWO_SIGNATURES_PATH]
    )
    assert result.exit_code == 1
    assert 'Field 1: Signature1' in result.output
    assert 'Field 2: Signature2' in result.output
    assert 'The signature is judged self-signed.' in result.output


def test_cli_verify_incompatible_options(cli_runner):
    result = cli_runner.invoke(
        cli, ['verify', '--pretty-print', '--json', SIGNED_PATH]
    )
    assert result.exit_code == 1
    assert 'mutually exclusive' in result.output


def test_cli_verify_json(cli_runner):
    result = cli_runner.invoke(cli, ['verify', '--json', SIGNED_PATH])
    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert output['file'] == SIGNED_PATH
    assert output['documentStatus'] == 'valid'
    assert output['hasSignatures'] is True
    assert output['signatures'][0]['signerName'] == 'Alice Signer'


def test_cli_verify_batch(cli_runner):
    result = cli_runner.invoke(
        cli, ['verify', '--executive-summary', '--jobs', '2',
              SIGNED_PATH, UNSIGNED_PATH, TAMPERED_PATH, 'nonexistent.pdf']
    )
    assert result.exit_code == 1
    lines = result.output.splitlines()
    assert f'{SIGNED_PATH}:VALID' in lines
    assert f'{UNSIGNED_PATH}:NONE' in lines
    assert f'{TAMPERED_PATH}:TAMPERED' in lines
    assert 'nonexistent.pdf:INVALID' in lines


def test_cli_report(cli_runner):
    result = cli_runner.invoke(
        cli, ['report', SIGNED_PATH, '-o', 'report.json']
    )
    assert result.exit_code == 0, result.output
    with open('report.json', 'r') as inf:
        report = json.load(inf)
    assert report['file'] == SIGNED_PATH
    assert report['signaturesFound'] == 1
    assert report['documentStatus'] == 'valid'
    assert 'reportGeneratedAt' in report


def test_cli_report_stdout_with_config(cli_runner):
    with open('config.yml', 'w') as outf:
        outf.write("report-indent: null\n")
    result = cli_runner.invoke(
        cli, ['--config', 'config.yml', 'report', UNSIGNED_PATH]
    )
    assert result.exit_code == 0, result.output
    (line,) = result.output.splitlines()
    assert json.loads(line)['signaturesFound'] == 0


def test_cli_default_config_file(cli_runner):
    with open('pdfsigcheck.yml', 'w') as outf:
        outf.write("verification:\n    locator-strategy: positional\n")
    result = cli_runner.invoke(cli, ['verify', SIGNED_PATH])
    assert result.exit_code == 0, result.output


def test_cli_bad_config(cli_runner):
    with open('config.yml', 'w') as outf:
        outf.write("verification:\n    locator-strategy: guesswork\n")
    result = cli_runner.invoke(
        cli, ['--config', 'config.yml', 'verify', SIGNED_PATH]
    )
    assert result.exit_code == 1
    assert 'Configuration problem' in result.output


def test_cli_list(cli_runner):
    result = cli_runner.invoke(cli, ['list', TWO_SIGNATURES_PATH])
    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == ['Signature1', 'Signature2']

    result = cli_runner.invoke(cli, ['list', UNSIGNED_PATH])
    assert result.output.splitlines() == ['Signature1']


@pytest.mark.parametrize('pem', [True, False])
def test_cli_inspect_cert(cli_runner, pem):
    with open('cert.crt', 'wb') as outf:
        outf.write(pem_armor(SIGNER_CERT) if pem else SIGNER_CERT.dump())
    result = cli_runner.invoke(cli, ['inspect-cert', 'cert.crt'])
    assert result.exit_code == 0, result.output
    assert 'Subject: C=BE, O=Example Inc, OU=Testing Authority, ' \
           'CN=Alice Signer' in result.output
    assert 'Public key: RSA (2048 bits)' in result.output
    assert f'SHA256 fingerprint: {_fingerprint(SIGNER_CERT)}' \
        in result.output
    assert 'Extension basic_constraints [critical]' in result.output


def test_cli_inspect_cert_json(cli_runner):
    with open('cert.pem', 'wb') as outf:
        outf.write(pem_armor(EC_SIGNER_CERT))
    result = cli_runner.invoke(cli, ['inspect-cert', '--json', 'cert.pem'])
    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert output['subject']['CN'] == 'Eve Ecdsa'
    assert output['publicKeyAlgorithm'] == 'EC'
    assert output['keySize'] == 256


def test_cli_inspect_cert_garbage(cli_runner):
    with open('cert.pem', 'wb') as outf:
        outf.write(b'this is not a certificate')
    result = cli_runner.invoke(cli, ['inspect-cert', 'cert.pem'])
    assert result.exit_code == 1
    assert 'Failed to parse certificate' in result.output


def test_cli_version(cli_runner):
    result = cli_runner.invoke(cli, ['--version'])
    assert result.exit_code == 0
    assert 'pdfsigcheck' in result.output
