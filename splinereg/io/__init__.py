"""I/O utilities for images, point sets and parameter files."""

from splinereg.io.loaders import (
    ImageGeometry,
    load_volume,
    load_nifti,
    load_dicom_series,
    load_numpy,
    sitk_to_numpy,
    validate_metadata,
    get_physical_coords,
)
from splinereg.io.savers import save_volume, save_field, save_dvf, load_dvf
from splinereg.io.points import read_point_file, write_point_file, write_output_points
from splinereg.io.parameter_file import (
    parse_parameter_text,
    format_parameter_map,
    read_parameter_file,
    write_parameter_file,
    read_parameter_files,
    write_parameter_files,
)

__all__ = [
    'ImageGeometry',
    'load_volume',
    'load_nifti',
    'load_dicom_series',
    'load_numpy',
    'sitk_to_numpy',
    'validate_metadata',
    'get_physical_coords',
    'save_volume',
    'save_field',
    'save_dvf',
    'load_dvf',
    'read_point_file',
    'write_point_file',
    'write_output_points',
    'parse_parameter_text',
    'format_parameter_map',
    'read_parameter_file',
    'write_parameter_file',
    'read_parameter_files',
    'write_parameter_files',
]
