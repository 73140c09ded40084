import os
import tempfile
import unittest

import firmlint


class RuleConfigTests(unittest.TestCase):
    def test_defaults_resolve_from_catalog(self) -> None:
        resolved = firmlint.RuleConfig().resolve("LineLength")
        self.assertTrue(resolved.enabled)
        self.assertEqual(resolved.severity, "warning")
        self.assertEqual(resolved.params, {"max_length": 100})

    def test_overrides_are_applied(self) -> None:
        config = firmlint.RuleConfig.from_mapping({
            "rules": {
                "LineLength": {"enabled": False},
                "IndentationWidth": {"severity": "Error", "width": 4},
                "DynamicAllocation": {"identifiers": ["malloc"]},
            }
        })
        self.assertFalse(config.resolve("LineLength").enabled)
        indent = config.resolve("IndentationWidth")
        self.assertEqual(indent.severity, "error")
        self.assertEqual(indent.params["width"], 4)
        self.assertEqual(config.resolve("DynamicAllocation").params["identifiers"], frozenset({"malloc"}))

    def test_unknown_rule(self) -> None:
        with self.assertRaises(firmlint.ConfigError):
            firmlint.RuleConfig.from_mapping({"rules": {"NoSuchRule": {}}})

    def test_unknown_parameter(self) -> None:
        with self.assertRaises(firmlint.ConfigError):
            firmlint.RuleConfig.from_mapping({"rules": {"LineLength": {"width": 3}}})

    def test_wrong_parameter_types(self) -> None:
        bad = [
            {"LineLength": {"max_length": "long"}},
            {"LineLength": {"max_length": True}},
            {"CommentStyle": {"allow_block_comments": "yes"}},
            {"DynamicAllocation": {"identifiers": "malloc"}},
            {"DynamicAllocation": {"identifiers": [1, 2]}},
            {"LineLength": {"enabled": "true"}},
        ]
        for rules in bad:
            with self.subTest(rules=rules):
                with self.assertRaises(firmlint.ConfigError):
                    firmlint.RuleConfig.from_mapping({"rules": rules})

    def test_out_of_range_parameter(self) -> None:
        with self.assertRaises(firmlint.ConfigError):
            firmlint.RuleConfig.from_mapping({"rules": {"IndentationWidth": {"width": 0}}})

    def test_bad_severity(self) -> None:
        with self.assertRaises(firmlint.ConfigError):
            firmlint.RuleConfig.from_mapping({"rules": {"LineLength": {"severity": "fatal"}}})

    def test_bad_shape(self) -> None:
        for data in (["LineLength"], {"rule": {}}, {"rules": ["LineLength"]}, {"rules": {"LineLength": 3}}):
            with self.subTest(data=data):
                with self.assertRaises(firmlint.ConfigError):
                    firmlint.RuleConfig.from_mapping(data)

    def test_engine_validates_hand_built_config(self) -> None:
        config = firmlint.RuleConfig(rules={"NoSuchRule": firmlint.RuleOverride()})
        with self.assertRaises(firmlint.ConfigError):
            firmlint.RuleEngine(config)

    def test_bad_config_fails_before_any_file(self) -> None:
        config = firmlint.RuleConfig(rules={"LineLength": firmlint.RuleOverride(parameters={"max_length": -1})})
        sources = [firmlint.SourceInput("a.c", b"int g_value;\n")]
        with self.assertRaises(firmlint.ConfigError):
            firmlint.check_files(sources, config)


class YamlConfigTests(unittest.TestCase):
    YAML = """\
rules:
  LineLength:
    max_length: 120
    severity: info
  MagicNumber:
    enabled: false
  HeaderGuard:
    header_extensions: [".h", ".hpp"]
"""

    def test_parse_yaml(self) -> None:
        config = firmlint.rule_config_from_yaml(self.YAML)
        line_length = config.resolve("LineLength")
        self.assertEqual(line_length.params["max_length"], 120)
        self.assertEqual(line_length.severity, "info")
        self.assertFalse(config.resolve("MagicNumber").enabled)
        self.assertEqual(
            config.resolve("HeaderGuard").params["header_extensions"], frozenset({".h", ".hpp"})
        )

    def test_empty_document_is_default_config(self) -> None:
        self.assertEqual(firmlint.rule_config_from_yaml("").rules, {})

    def test_invalid_yaml(self) -> None:
        with self.assertRaises(firmlint.ConfigError):
            firmlint.rule_config_from_yaml("rules: [unclosed")

    def test_load_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "firmlint.yaml")
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(self.YAML)
            config = firmlint.load_rule_config(path)
        self.assertEqual(config.resolve("LineLength").params["max_length"], 120)

    def test_missing_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(firmlint.ConfigError):
                firmlint.load_rule_config(os.path.join(tmp, "missing.yaml"))


class ConfiguredRunTests(unittest.TestCase):
    def check(self, source: str, config: firmlint.RuleConfig):
        return firmlint.RuleEngine(config).check_source("sample.c", source.encode("utf-8")).violations

    def test_disabled_rule_reports_nothing(self) -> None:
        config = firmlint.RuleConfig.from_mapping({"rules": {"LineLength": {"enabled": False}}})
        line = "// " + "x" * 120 + "\n"
        self.assertEqual(self.check(line, config), [])

    def test_severity_override_reaches_violation(self) -> None:
        config = firmlint.RuleConfig.from_mapping({"rules": {"GlobalNamingPattern": {"severity": "warning"}}})
        violations = self.check("int g_Count;\n", config)
        self.assertEqual([(v.rule_id, v.severity) for v in violations], [("GlobalNamingPattern", "warning")])

    def test_disabling_one_rule_leaves_others_unchanged(self) -> None:
        source = "int g_Count = 0xff;\n"
        everything = self.check(source, firmlint.RuleConfig())
        config = firmlint.RuleConfig.from_mapping({"rules": {"HexLiteralCase": {"enabled": False}}})
        fewer = self.check(source, config)
        self.assertEqual(fewer, [v for v in everything if v.rule_id != "HexLiteralCase"])


class CatalogTests(unittest.TestCase):
    def test_catalog_ids(self) -> None:
        expected = {
            "FunctionNamingPattern", "TypeNamingPattern", "GlobalNamingPattern", "StaticNamingPattern",
            "LocalNamingPattern", "ParameterNamingPattern", "ConstantNamingPattern", "MacroNamingPattern",
            "EnumValueNamingPattern", "EnumWrapper", "FilePairing", "IndentationWidth", "BracePlacement",
            "AlwaysBrace", "LineLength", "OperatorSpacing", "HexLiteralCase", "LongSuffixCase",
            "CommentStyle", "SingleReturnPath", "YodaComparison", "SwitchDefaultRequired",
            "MacroParameterParenthesization", "MagicNumber", "HeaderGuard", "DynamicAllocation",
        }
        self.assertEqual(set(firmlint.RULE_CATALOG), expected)

    def test_describe_rules(self) -> None:
        described = {entry["rule_id"]: entry for entry in firmlint.describe_rules()}
        self.assertEqual(described["IndentationWidth"]["parameters"], {"width": 3})
        self.assertEqual(described["FilePairing"]["target"], "project")
        self.assertEqual(
            described["DynamicAllocation"]["parameters"]["identifiers"],
            ["calloc", "delete", "free", "malloc", "new", "realloc"],
        )


if __name__ == "__main__":
    unittest.main()
