"""
Unit tests for reading schema declaration files.
"""

import json

import pytest
import yaml

from strata.errors import ConfigurationError
from strata.schema.loader import load_schema, snapshot_to_dict
from tests.fixtures.schemas import with_department_fk


class TestLoadSchema:
    """Test format selection and error reporting."""

    @pytest.mark.parametrize('suffix', ['.yaml', '.yml'])
    def test_yaml(self, tmp_path, suffix):
        path = tmp_path / f'schema{suffix}'
        path.write_text(yaml.safe_dump(snapshot_to_dict(with_department_fk())))
        assert load_schema(path) == with_department_fk()

    def test_json(self, tmp_path):
        path = tmp_path / 'schema.json'
        path.write_text(json.dumps(snapshot_to_dict(with_department_fk())))
        assert load_schema(path) == with_department_fk()

    def test_other_suffix_is_read_as_json(self, tmp_path):
        path = tmp_path / 'schema.txt'
        path.write_text('tables: []\n')
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_schema(path)

    def test_empty_yaml_is_empty_schema(self, tmp_path):
        path = tmp_path / 'schema.yaml'
        path.write_text('')
        assert len(load_schema(path)) == 0

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Schema file not found"):
            load_schema(tmp_path / 'schema.yaml')

    def test_invalid_declaration(self, tmp_path):
        path = tmp_path / 'schema.yaml'
        path.write_text('tables: 5\n')
        with pytest.raises(ConfigurationError, match="Invalid schema file"):
            load_schema(path)
