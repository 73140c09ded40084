import unittest

import firmlint


def check(source: str, path: str = "sample.c", config: firmlint.RuleConfig = None):
    engine = firmlint.RuleEngine(config)
    return engine.check_source(path, source.encode("utf-8")).violations


def of_rule(violations, rule_id: str):
    return [v for v in violations if v.rule_id == rule_id]


def configured(rules):
    return firmlint.RuleConfig.from_mapping({"rules": rules})


class CommentStyleTests(unittest.TestCase):
    def test_block_comment_flagged(self) -> None:
        violations = of_rule(check("/* note */\nint g_value;\n"), "CommentStyle")
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].span, firmlint.SourceSpan("sample.c", 1, 1, 1, 10))

    def test_block_comment_inside_directive(self) -> None:
        violations = of_rule(check("#define LIMIT (4) /* max */\n"), "CommentStyle")
        self.assertEqual(len(violations), 1)

    def test_block_comments_allowed_by_config(self) -> None:
        config = configured({"CommentStyle": {"allow_block_comments": True}})
        self.assertEqual(of_rule(check("/* note */\n", config=config), "CommentStyle"), [])


SINGLE_RETURN_SOURCE = """\
int Pick(int value)
{
   if (value)
   {
      return 1;
   }
   return 0;
}
"""


class SingleReturnTests(unittest.TestCase):
    def test_two_returns_span_the_signature(self) -> None:
        violations = of_rule(check(SINGLE_RETURN_SOURCE), "SingleReturnPath")
        self.assertEqual(len(violations), 1)
        violation = violations[0]
        self.assertEqual(violation.span, firmlint.SourceSpan("sample.c", 1, 1, 1, 19))
        self.assertEqual([span.line_start for span in violation.related], [5, 7])

    def test_configured_maximum(self) -> None:
        config = configured({"SingleReturnPath": {"max_returns": 2}})
        self.assertEqual(of_rule(check(SINGLE_RETURN_SOURCE, config=config), "SingleReturnPath"), [])


class YodaTests(unittest.TestCase):
    TEMPLATE = "void Run(int value)\n{{\n   if ({condition})\n   {{\n      value = 0;\n   }}\n}}\n"

    def yoda(self, condition: str):
        return of_rule(check(self.TEMPLATE.format(condition=condition)), "YodaComparison")

    def test_literal_on_the_right(self) -> None:
        violations = self.yoda("value == 3")
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].span, firmlint.SourceSpan("sample.c", 3, 8, 3, 17))

    def test_named_constant_on_the_right(self) -> None:
        self.assertEqual(len(self.yoda("value != LIMIT")), 1)

    def test_negative_literal_on_the_right(self) -> None:
        self.assertEqual(len(self.yoda("value == -1")), 1)

    def test_constant_on_the_left_is_fine(self) -> None:
        self.assertEqual(self.yoda("3 == value"), [])
        self.assertEqual(self.yoda("LIMIT == value"), [])

    def test_two_variables_are_fine(self) -> None:
        self.assertEqual(self.yoda("value == other"), [])

    def test_call_on_the_right_is_fine(self) -> None:
        self.assertEqual(self.yoda("value == READ_PORT(1)"), [])


SWITCH_WITHOUT_DEFAULT = """\
void Run(int value)
{
   switch (value)
   {
      case 1:
         break;
      case 2:
         break;
      case 3:
         break;
   }
}
"""


class SwitchDefaultTests(unittest.TestCase):
    def test_missing_default(self) -> None:
        violations = of_rule(check(SWITCH_WITHOUT_DEFAULT), "SwitchDefaultRequired")
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].span, firmlint.SourceSpan("sample.c", 3, 4, 3, 9))

    def test_default_present(self) -> None:
        source = SWITCH_WITHOUT_DEFAULT.replace("      case 3:", "      default:")
        self.assertEqual(of_rule(check(source), "SwitchDefaultRequired"), [])

    def test_nested_switch_default_does_not_count_for_outer(self) -> None:
        source = (
            "void Run(int value)\n{\n   switch (value)\n   {\n      case 1:\n"
            "         switch (value)\n         {\n            default:\n               break;\n"
            "         }\n         break;\n   }\n}\n"
        )
        violations = of_rule(check(source), "SwitchDefaultRequired")
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].span.line_start, 3)


class MacroParameterTests(unittest.TestCase):
    def test_unparenthesized_parameters(self) -> None:
        violations = check("#define ADD(a,b) a+b\n")
        self.assertEqual([v.rule_id for v in violations], ["MacroParameterParenthesization"])

    def test_fully_parenthesized(self) -> None:
        self.assertEqual(check("#define ADD(a, b) ((a) + (b))\n"), [])

    def test_increment_in_body(self) -> None:
        violations = of_rule(check("#define BUMP(x) ((x)++)\n"), "MacroParameterParenthesization")
        self.assertEqual(len(violations), 1)
        self.assertIn("++", violations[0].message)

    def test_body_not_wrapped(self) -> None:
        violations = of_rule(check("#define SUM(a, b) (a) + (b)\n"), "MacroParameterParenthesization")
        self.assertEqual(len(violations), 1)

    def test_stringize_and_paste_are_exempt(self) -> None:
        self.assertEqual(check("#define NAME(x) #x\n#define JOIN(a, b) a ## b\n"), [])

    def test_object_like_macros_are_ignored(self) -> None:
        self.assertEqual(of_rule(check("#define LIMIT 4 + 1\n"), "MacroParameterParenthesization"), [])


class MagicNumberTests(unittest.TestCase):
    def test_repeated_literal(self) -> None:
        source = "void Run(int value)\n{\n   value = 42;\n   value = value + 42;\n}\n"
        violations = of_rule(check(source), "MagicNumber")
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].span, firmlint.SourceSpan("sample.c", 3, 12, 3, 13))
        self.assertEqual(len(violations[0].related), 1)

    def test_values_compare_numerically(self) -> None:
        source = "void Run(int value)\n{\n   value = 0x2A;\n   value = 42;\n}\n"
        self.assertEqual(len(of_rule(check(source), "MagicNumber")), 1)

    def test_single_use_and_allowed_values(self) -> None:
        source = "void Run(int value)\n{\n   value = 42;\n   value = 1;\n   value = 1;\n}\n"
        self.assertEqual(of_rule(check(source), "MagicNumber"), [])

    def test_constants_and_enums_are_bound(self) -> None:
        source = (
            "const int LIMIT = 42;\nconst int OTHER_LIMIT = 42;\n"
            "typedef struct\n{\n   enum\n   {\n      LOW = 5,\n      HIGH = 5\n   } Value;\n} Level;\n"
        )
        self.assertEqual(of_rule(check(source), "MagicNumber"), [])

    def test_constant_table_initializer_is_bound(self) -> None:
        source = (
            "const int TABLE[3] = { 7, 7, 7 };\n"
            "const int NESTED[2][2] = { { 9, 9 }, { 9, 9 } };\n"
        )
        self.assertEqual(of_rule(check(source), "MagicNumber"), [])

    def test_mutable_table_initializer_is_not_bound(self) -> None:
        source = "int g_table[3] = { 7, 7, 7 };\n"
        violations = of_rule(check(source), "MagicNumber")
        self.assertEqual(len(violations), 1)
        self.assertEqual(len(violations[0].related), 2)

    def test_threshold(self) -> None:
        config = configured({"MagicNumber": {"min_occurrences": 3}})
        source = "void Run(int value)\n{\n   value = 42;\n   value = 42;\n}\n"
        self.assertEqual(of_rule(check(source, config=config), "MagicNumber"), [])

    def test_numeric_value(self) -> None:
        self.assertEqual(firmlint.numeric_value("0x10"), 16)
        self.assertEqual(firmlint.numeric_value("020"), 16)
        self.assertEqual(firmlint.numeric_value("0b10000"), 16)
        self.assertEqual(firmlint.numeric_value("16UL"), 16)
        self.assertEqual(firmlint.numeric_value("2.5f"), 2.5)


class HeaderGuardTests(unittest.TestCase):
    def test_compliant_guard(self) -> None:
        source = "#ifndef _MOTOR_H\n#define _MOTOR_H\nvoid MotorRun(void);\n#endif\n"
        self.assertEqual(check(source, path="motor.h"), [])

    def test_wrong_guard_name(self) -> None:
        source = "#ifndef MOTOR_H\n#define MOTOR_H\nvoid MotorRun(void);\n#endif\n"
        violations = of_rule(check(source, path="motor.h"), "HeaderGuard")
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].span, firmlint.SourceSpan("motor.h", 1, 9, 1, 15))

    def test_missing_guard(self) -> None:
        violations = of_rule(check("void MotorRun(void);\n", path="motor.h"), "HeaderGuard")
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].span, firmlint.SourceSpan("motor.h", 1, 1, 1, 1))

    def test_if_not_defined_form(self) -> None:
        source = "#if !defined(_MOTOR_H)\n#define _MOTOR_H\n#endif\n"
        self.assertEqual(of_rule(check(source, path="motor.h"), "HeaderGuard"), [])

    def test_pragma_once(self) -> None:
        self.assertEqual(of_rule(check("#pragma once\n", path="motor.h"), "HeaderGuard"), [])
        config = configured({"HeaderGuard": {"allow_pragma_once": False}})
        self.assertEqual(
            len(of_rule(check("#pragma once\n", path="motor.h", config=config), "HeaderGuard")), 1
        )

    def test_sources_are_not_checked(self) -> None:
        self.assertEqual(of_rule(check("int g_value;\n", path="motor.c"), "HeaderGuard"), [])

    def test_expected_name(self) -> None:
        self.assertEqual(firmlint.expected_guard_name("drivers/motor_ctrl.h"), "_MOTOR_CTRL_H")


class DynamicAllocationTests(unittest.TestCase):
    def test_malloc_and_free(self) -> None:
        source = "void Run(void)\n{\n   char *block = malloc(16);\n   free(block);\n}\n"
        violations = of_rule(check(source), "DynamicAllocation")
        self.assertEqual([v.span.line_start for v in violations], [3, 4])

    def test_new_and_delete(self) -> None:
        source = "void Run(void)\n{\n   int *item = new int;\n   delete item;\n}\n"
        self.assertEqual(len(of_rule(check(source, path="sample.cpp"), "DynamicAllocation")), 2)

    def test_deleted_function_is_fine(self) -> None:
        self.assertEqual(of_rule(check("void Copy(void) = delete;\n"), "DynamicAllocation"), [])

    def test_member_named_free_is_fine(self) -> None:
        source = "void Run(void)\n{\n   g_pool.free(1);\n}\n"
        self.assertEqual(of_rule(check(source), "DynamicAllocation"), [])


class SuppressionTests(unittest.TestCase):
    def test_trailing_allow_comment(self) -> None:
        self.assertEqual(check("int g_Count; // @ALLOW(GlobalNamingPattern)\n"), [])

    def test_standalone_allow_comment_covers_next_line(self) -> None:
        self.assertEqual(check("// @ALLOW(GlobalNamingPattern)\nint g_Count;\n"), [])

    def test_other_rules_are_not_suppressed(self) -> None:
        violations = check("int g_Count; // @ALLOW(LineLength, MagicNumber)\n")
        self.assertEqual([v.rule_id for v in violations], ["GlobalNamingPattern"])


if __name__ == "__main__":
    unittest.main()
