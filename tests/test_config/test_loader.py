"""配置加载器测试

测试 YAML 配置加载和配置缓存
"""

import pytest

from ycascade.config import CascadeSettings, ConfigLoader, UniqueStrategy, load_yaml_config


YAML_CONTENT = """
cascade:
  unique_strategy: sentinel
  strict_validation: true
  deleted_by_field: removed_by

logging:
  level: DEBUG
"""


@pytest.fixture
def cascade_yaml(temp_file):
    """创建示例 YAML 配置文件"""
    return temp_file("config/cascade.yaml", YAML_CONTENT)


@pytest.fixture(autouse=True)
def clear_loader_cache():
    ConfigLoader.clear_cache()
    yield
    ConfigLoader.clear_cache()


class TestConfigLoader:
    """ConfigLoader 测试"""

    def test_load_yaml_config(self, cascade_yaml):
        """测试加载 YAML 配置"""
        config = ConfigLoader.load(cascade_yaml, use_cache=False)

        assert config["cascade"]["unique_strategy"] == "sentinel"
        assert config["logging"]["level"] == "DEBUG"

    def test_config_caching(self, cascade_yaml):
        """测试配置缓存"""
        config1 = ConfigLoader.load(cascade_yaml)
        config2 = ConfigLoader.load(cascade_yaml)

        assert config1 is config2

    def test_cache_does_not_auto_refresh_until_reload(self, temp_file):
        """测试缓存不会自动刷新，需显式 reload"""
        path = temp_file("settings.yaml", "cascade:\n  cascade_enabled: true\n")

        config_v1 = ConfigLoader.load(path)
        assert config_v1["cascade"]["cascade_enabled"] is True

        with open(path, "w", encoding="utf-8") as f:
            f.write("cascade:\n  cascade_enabled: false\n")

        assert ConfigLoader.load(path)["cascade"]["cascade_enabled"] is True
        assert ConfigLoader.reload(path)["cascade"]["cascade_enabled"] is False

    def test_missing_file(self, temp_dir):
        """测试配置文件不存在"""
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load("missing.yaml", base_dir=temp_dir)

    def test_empty_file(self, temp_file):
        """测试空文件得到空字典"""
        path = temp_file("empty.yaml", "")

        assert ConfigLoader.load(path) == {}


class TestLoadYamlConfig:
    """load_yaml_config 测试"""

    def test_load_section(self, cascade_yaml):
        """测试只取 cascade 节点"""
        settings = load_yaml_config(cascade_yaml, CascadeSettings, section="cascade")

        assert settings.unique_strategy == UniqueStrategy.SENTINEL
        assert settings.strict_validation is True
        assert settings.deleted_by_field == "removed_by"

    def test_overrides(self, cascade_yaml):
        """测试覆盖参数优先，且不污染缓存"""
        settings = load_yaml_config(
            cascade_yaml, CascadeSettings, section="cascade", strict_validation=False,
        )

        assert settings.strict_validation is False
        assert ConfigLoader.load(cascade_yaml)["cascade"]["strict_validation"] is True

    def test_missing_section(self, cascade_yaml):
        """测试节点不存在时使用默认值"""
        settings = load_yaml_config(cascade_yaml, CascadeSettings, section="other")

        assert settings.unique_strategy == UniqueStrategy.MANGLE
