"""Tests for the command-line entry point."""

import pytest

from main import build_parser, main, prepare_config


def test_parser_collects_repeated_seeds():
    args = build_parser().parse_args(['--seed', 'http://a.test/', '--seed', 'http://b.test/',
                                      '--max-pages', '5', '--json-logs'])
    assert args.seed == ['http://a.test/', 'http://b.test/']
    assert args.max_pages == 5
    assert args.json_logs
    assert args.config == 'config.yaml'


def test_prepare_config_merges_seeds(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('frontier:\n  seed_urls: ["http://a.test/"]\n')
    config = prepare_config(str(path), ['http://a.test/', 'http://b.test/'])
    assert config.frontier.seed_urls == ['http://a.test/', 'http://b.test/']


def test_missing_config_file(tmp_path, capsys):
    assert main(['--config', str(tmp_path / 'absent.yaml')]) == 1
    assert 'not found' in capsys.readouterr().out


def test_invalid_config_exits_with_error(tmp_path, capsys):
    path = tmp_path / 'config.yaml'
    path.write_text('frontier:\n  global_concurrency_cap: 0\n')
    assert main(['--config', str(path)]) == 2
    assert 'Configuration error' in capsys.readouterr().out


def test_version(capsys):
    with pytest.raises(SystemExit):
        build_parser().parse_args(['--version'])
    assert '1.0.0' in capsys.readouterr().out
