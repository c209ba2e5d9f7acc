"""
Tests for configuration objects and logging setup.
"""

import logging
import os

import pytest
import yaml

from splinereg.application import ApplicationRequest, TransformixPipeline
from splinereg.core import ApplicationConfig, KernelConfig, LandmarkConfig, create_default_config
from splinereg.utils import reset_logger, setup_logger


def test_defaults():
    config = create_default_config()

    assert config.kernel.kernel_type == 'ThinPlateSpline'
    assert config.kernel.relaxation_factor == 0.0
    assert config.kernel.poisson_ratio == 0.3
    assert config.kernel.matrix_inversion_method == 'SVD'
    assert config.landmarks.use_composition
    assert config.chunk_size == 4096
    assert config.resolved_num_threads == (os.cpu_count() or 1)


def test_yaml_round_trip(tmp_path):
    config = ApplicationConfig()
    config.kernel.kernel_type = 'ElasticBodySpline'
    config.kernel.poisson_ratio = 0.45
    config.landmarks.fixed_points = 'fixed.txt'
    config.output.compute_deformation_field = True
    config.num_threads = 2

    path = tmp_path / 'configs' / 'run.yaml'
    config.to_yaml(str(path))
    loaded = ApplicationConfig.from_yaml(str(path))

    assert loaded.to_dict() == config.to_dict()
    assert loaded.resolved_num_threads == 2


def test_from_partial_yaml(tmp_path):
    path = tmp_path / 'run.yaml'
    path.write_text(yaml.dump({'kernel': {'relaxation_factor': 0.5}, 'verbose': False}))

    config = ApplicationConfig.from_yaml(str(path))

    assert config.kernel.relaxation_factor == 0.5
    assert config.kernel.kernel_type == 'ThinPlateSpline'
    assert not config.verbose


def test_empty_yaml(tmp_path):
    path = tmp_path / 'run.yaml'
    path.write_text('')
    assert ApplicationConfig.from_yaml(str(path)).to_dict() == ApplicationConfig().to_dict()


def test_unknown_yaml_key(tmp_path):
    path = tmp_path / 'run.yaml'
    path.write_text(yaml.dump({'kernel': {'stiffness': 1.0}}))
    with pytest.raises(TypeError):
        ApplicationConfig.from_yaml(str(path))


def test_deprecated_input_points():
    """The legacy spelling of the fixed points path still works but warns."""
    with pytest.warns(DeprecationWarning):
        config = LandmarkConfig(input_points='legacy.txt')
    assert config.fixed_points == 'legacy.txt'

    with pytest.warns(DeprecationWarning):
        config = LandmarkConfig(fixed_points='new.txt', input_points='legacy.txt')
    assert config.fixed_points == 'new.txt'


def test_kernel_parameter_map():
    pmap = KernelConfig(kernel_type='VolumeSpline', relaxation_factor=0.1,
                        matrix_inversion_method='QR').to_parameter_map()

    assert pmap['SplineKernelType'] == ['VolumeSpline']
    assert pmap.get_float('SplineRelaxationFactor') == 0.1
    assert pmap['TPSMatrixInversionMethod'] == ['QR']


def test_request_from_config():
    config = ApplicationConfig()
    config.output.compute_spatial_jacobian = True
    config.output.output_directory = '/tmp/out'

    request = ApplicationRequest.from_config(config.output)

    assert request.compute_spatial_jacobian
    assert request.output_directory == '/tmp/out'
    assert request.wants_derived_field
    assert request.needs_output_directory


def test_setup_logger(tmp_path):
    log_file = tmp_path / 'logs' / 'run.log'
    logger = setup_logger('splinereg.test', level=logging.DEBUG, log_file=str(log_file), log_to_console=False)
    try:
        logger.debug('hello')
        assert len(logger.handlers) == 1
    finally:
        reset_logger('splinereg.test')

    assert logger.handlers == []
    assert 'DEBUG | MainThread | splinereg.test | hello' in log_file.read_text()


def test_setup_logger_is_idempotent():
    logger = setup_logger('splinereg.test2', log_to_console=True)
    setup_logger('splinereg.test2', log_to_console=True)
    try:
        assert len(logger.handlers) == 1
    finally:
        reset_logger('splinereg.test2')


def test_pipeline_from_config():
    config = ApplicationConfig(num_threads=3, chunk_size=128, verbose=False)
    pipeline = TransformixPipeline.from_config(config)

    assert pipeline.num_threads == 3
    assert pipeline.chunk_size == 128
    assert not pipeline.verbose
