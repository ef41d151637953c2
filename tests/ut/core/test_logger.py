"""日志配置测试"""

from __future__ import annotations

import json
import logging

from pinset.utils.logger import JSONFormatter, reset_logging, setup_logging


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "pinset.core.dep.fetcher", logging.INFO, __file__, 1, "已安装: %s", ("base",), None,
    )
    for k, v in extra.items():
        setattr(record, k, v)
    return record


class TestJSONFormatter:
    def test_context_fields(self) -> None:
        data = json.loads(JSONFormatter().format(_record(package="base", cache_key="s@r")))
        assert data["message"] == "已安装: base"
        assert data["level"] == "INFO"
        assert data["package"] == "base"
        assert data["cache_key"] == "s@r"

    def test_fields_omitted_without_extra(self) -> None:
        data = json.loads(JSONFormatter().format(_record()))
        assert "package" not in data
        assert "exception" not in data


class TestSetupLogging:
    def test_single_handler(self) -> None:
        try:
            setup_logging("DEBUG", json_output=True)
            setup_logging("WARNING")
            root = logging.getLogger()
            assert len(root.handlers) == 1
            assert root.level == logging.WARNING
            assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        finally:
            reset_logging()
            logging.getLogger().setLevel(logging.WARNING)
