"""命令行接口测试"""

import os
import tempfile

import pytest
import yaml
from unittest.mock import AsyncMock, patch

from main import create_argument_parser, main, validate_config_file


class TestArgumentParser:
    """命令行参数解析器测试"""

    def setup_method(self):
        self.parser = create_argument_parser()

    def test_parse_config_file(self):
        args = self.parser.parse_args(['config.yaml'])

        assert args.config_file == 'config.yaml'
        assert not args.validate
        assert not args.check_once
        assert args.log_level is None
        assert args.log_file is None

    def test_parse_flags(self):
        args = self.parser.parse_args(['--validate', '--check-once', '--log-level', 'DEBUG',
                                       '--log-file', '/tmp/monitor.log', 'config.yaml'])

        assert args.validate
        assert args.check_once
        assert args.log_level == 'DEBUG'
        assert args.log_file == '/tmp/monitor.log'

    def test_invalid_log_level(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(['--log-level', 'TRACE', 'config.yaml'])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            self.parser.parse_args(['--version'])

        assert exc_info.value.code == 0
        assert 'uptime-monitor 1.0.0' in capsys.readouterr().out


class TestConfigValidation:
    """配置验证功能测试"""

    @pytest.fixture
    def valid_config_file(self):
        """创建有效的配置文件"""
        config_data = {
            'storage': {'backend': 'memory'},
            'alerts': {
                'teams': {'webhook_urls': ['https://outlook.office.com/webhook/abc']}
            },
            'services': [
                {'name': 'user-api', 'type': 'api', 'url': 'http://localhost:8080/health'},
                {'name': 'user-cache', 'type': 'redis',
                 'connection_string': 'redis://localhost:6379'},
            ]
        }

        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.dump(config_data, f, default_flow_style=False)
            temp_file = f.name

        yield temp_file

        if os.path.exists(temp_file):
            os.unlink(temp_file)

    @pytest.fixture
    def invalid_config_file(self):
        """创建无效的配置文件"""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("invalid: yaml: content: [")
            temp_file = f.name

        yield temp_file

        if os.path.exists(temp_file):
            os.unlink(temp_file)

    def test_validate_valid_config(self, valid_config_file):
        """测试验证有效配置"""
        with patch('builtins.print') as mock_print:
            result = validate_config_file(valid_config_file)

        assert result is True
        print_calls = [call[0][0] for call in mock_print.call_args_list]
        assert any('配置文件验证成功' in call for call in print_calls)
        assert any('服务数量: 2' in call for call in print_calls)
        assert any("告警通道: ['teams']" in call for call in print_calls)

    def test_validate_invalid_config(self, invalid_config_file):
        """测试验证无效配置"""
        with patch('builtins.print') as mock_print:
            result = validate_config_file(invalid_config_file)

        assert result is False
        print_calls = [call[0][0] for call in mock_print.call_args_list]
        assert any('配置文件验证失败' in call for call in print_calls)

    def test_validate_nonexistent_config(self):
        """测试验证不存在的配置文件"""
        with patch('builtins.print') as mock_print:
            result = validate_config_file('/nonexistent/config.yaml')

        assert result is False
        print_calls = [call[0][0] for call in mock_print.call_args_list]
        assert any('配置文件不存在' in call for call in print_calls)

    @pytest.mark.asyncio
    async def test_main_validate_exit_codes(self, valid_config_file, invalid_config_file):
        with patch('sys.argv', ['uptime-monitor', '--validate', valid_config_file]), \
                patch('builtins.print'):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 0

        with patch('sys.argv', ['uptime-monitor', '--validate', invalid_config_file]), \
                patch('builtins.print'):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 1


class TestMainEntry:
    """主函数测试"""

    @pytest.mark.asyncio
    async def test_no_config_file(self):
        with patch('sys.argv', ['uptime-monitor']), patch('builtins.print'):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_missing_config_file(self):
        with patch('sys.argv', ['uptime-monitor', '/nonexistent/config.yaml']), \
                patch('builtins.print'):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_check_once_exit_code(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("storage:\n  backend: memory\n")
            config_file = f.name

        try:
            with patch('sys.argv', ['uptime-monitor', '--check-once', config_file]), \
                    patch('main.check_once', AsyncMock(return_value=False)) as mock_check:
                with pytest.raises(SystemExit) as exc_info:
                    await main()
            assert exc_info.value.code == 1
            mock_check.assert_awaited_once_with(config_file,
                                                {'log_level': None, 'log_file': None})
        finally:
            os.unlink(config_file)
