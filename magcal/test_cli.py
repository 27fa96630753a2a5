"""Tests for the command-line entry point."""

import json

import numpy as np
import pytest

from magcal.__main__ import main
from magcal.conftest import ellipsoid_points


def test_simulated_run(tmp_path, capsys):
    output = tmp_path / 'cal.json'

    code = main(['--simulate', '300', '--reference', '50', '--threshold', '2.0',
                 '--seed', '4', '--output', str(output)])

    assert code == 0
    assert 'Hard-iron offset' in capsys.readouterr().out
    saved = json.loads(output.read_text())
    assert saved['reference_field_strength'] == 50.0
    assert len(saved['parameters']) == 12


def test_sample_file_with_plot(tmp_path):
    samples = tmp_path / 'samples.csv'
    np.savetxt(samples, ellipsoid_points(), delimiter=',', header='x,y,z', comments='')
    plot = tmp_path / 'cal.png'

    code = main([str(samples), '--iterations', '10', '--seed', '0', '--plot', str(plot),
                 '--quiet'])

    assert code == 0
    assert plot.exists()


def test_quiet_prints_parameters(tmp_path, capsys):
    samples = tmp_path / 'samples.txt'
    np.savetxt(samples, ellipsoid_points())

    assert main([str(samples), '--iterations', '5', '--seed', '0', '--quiet']) == 0
    out = capsys.readouterr().out
    assert 'MAG_A11_COMP=' in out
    assert 'MAG_X_BIAS=' in out


def test_config_file(tmp_path, capsys):
    samples = tmp_path / 'samples.txt'
    np.savetxt(samples, ellipsoid_points())
    config = tmp_path / 'config.json'
    config.write_text(json.dumps({'ransac_iterations': 5, 'reference_field_strength': 2.0}))

    assert main([str(samples), '--config', str(config), '--seed', '0']) == 0
    assert 'reference 2' in capsys.readouterr().out


def test_too_few_samples_fails(tmp_path, capsys):
    samples = tmp_path / 'samples.txt'
    np.savetxt(samples, ellipsoid_points(5))

    assert main([str(samples)]) == 1
    assert 'insufficient_data' in capsys.readouterr().err


def test_needs_exactly_one_source(tmp_path):
    with pytest.raises(SystemExit):
        main([])
    with pytest.raises(SystemExit):
        main([str(tmp_path / 'x.csv'), '--simulate', '10'])


def test_invalid_option_is_usage_error(tmp_path):
    samples = tmp_path / 'samples.txt'
    np.savetxt(samples, ellipsoid_points())

    with pytest.raises(SystemExit):
        main([str(samples), '--threshold', '0'])
