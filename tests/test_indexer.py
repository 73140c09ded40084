import unittest

import firmlint


def index(text: str, path: str = "sample.c") -> firmlint.IndexedFile:
    return firmlint.index_source(firmlint.lex_source(text, path))


SAMPLE = """\
int g_total = 0;
static int s_ready;
const int LIMIT = 4;
#define SCALE(x) ((x) * 2)

typedef struct
{
   enum
   {
      STATE_OFF,
      STATE_ON
   } Value;
} State;

int Compute(int input, const char *label)
{
   int result = input;
   static int s_calls = 0;
   for (int step = 0; step < LIMIT; step++)
   {
      result += step;
   }
   switch (result)
   {
      case 1:
         result = 2;
         break;
      default:
         break;
   }
   return result;
}
"""


class SymbolKindTests(unittest.TestCase):
    def setUp(self) -> None:
        self.indexed = index(SAMPLE)
        self.kinds = {(sym.name, sym.kind) for sym in self.indexed.symbols}

    def test_file_scope_declarations(self) -> None:
        self.assertIn(("g_total", "global"), self.kinds)
        self.assertIn(("s_ready", "static"), self.kinds)
        self.assertIn(("LIMIT", "constant"), self.kinds)
        self.assertIn(("SCALE", "macro_define"), self.kinds)

    def test_types_and_enum_values(self) -> None:
        self.assertIn(("State", "type"), self.kinds)
        self.assertIn(("STATE_OFF", "enum_value"), self.kinds)
        self.assertIn(("STATE_ON", "enum_value"), self.kinds)

    def test_function_parameters_and_locals(self) -> None:
        self.assertIn(("Compute", "function"), self.kinds)
        self.assertIn(("input", "parameter"), self.kinds)
        self.assertIn(("label", "parameter"), self.kinds)
        self.assertIn(("result", "local"), self.kinds)
        self.assertIn(("s_calls", "static"), self.kinds)
        self.assertIn(("step", "local"), self.kinds)

    def test_struct_members_are_not_symbols(self) -> None:
        self.assertNotIn("Value", {sym.name for sym in self.indexed.symbols})

    def test_symbols_of_kind_is_position_ordered(self) -> None:
        names = [sym.name for sym in self.indexed.symbols_of_kind("global", "static")]
        self.assertEqual(names, ["g_total", "s_ready", "s_calls"])

    def test_prototype_parameters(self) -> None:
        indexed = index("void Set(int level, const char *name);\nvoid Idle(void);\n")
        kinds = {(sym.name, sym.kind) for sym in indexed.symbols}
        self.assertEqual(
            kinds,
            {("Set", "function"), ("level", "parameter"), ("name", "parameter"), ("Idle", "function")},
        )

    def test_function_pointer_and_pointer_to_const(self) -> None:
        indexed = index("void (*g_callback)(int);\nconst char *g_name;\nchar *const BUFFER_END = 0;\n")
        kinds = {(sym.name, sym.kind) for sym in indexed.symbols}
        self.assertIn(("g_callback", "global"), kinds)
        self.assertIn(("g_name", "global"), kinds)
        self.assertIn(("BUFFER_END", "constant"), kinds)

    def test_s_prefix_inside_block_is_static(self) -> None:
        indexed = index("void Run(void)\n{\n   int s_latched = 0;\n}\n")
        self.assertIn(("s_latched", "static"), {(sym.name, sym.kind) for sym in indexed.symbols})


class ScopeTreeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.indexed = index(SAMPLE)
        self.scopes = self.indexed.scopes

    def test_root_is_file(self) -> None:
        self.assertEqual(self.scopes.root.kind, "file")
        self.assertIsNone(self.scopes.root.parent)

    def test_function_scope(self) -> None:
        functions = self.scopes.of_kind("function")
        self.assertEqual([node.name for node in functions], ["Compute"])
        function = functions[0]
        self.assertEqual(self.indexed.tokens[function.signature_end].text, ")")
        self.assertEqual(self.indexed.tokens[function.header_token].text, "int")

    def test_switch_records_labels(self) -> None:
        switch = self.scopes.of_kind("switch")[0]
        labels = [self.indexed.tokens[i].text for i in switch.labels]
        self.assertEqual(labels, ["case", "default"])
        self.assertEqual(self.scopes[switch.parent].kind, "function")

    def test_enum_nested_in_typedef_struct(self) -> None:
        struct = self.scopes.of_kind("struct")[0]
        enum = self.scopes.of_kind("enum")[0]
        self.assertEqual(enum.parent, struct.index)
        self.assertEqual(struct.typedef_name, "State")
        self.assertEqual(struct.member_names, ["Value"])

    def test_for_block_keyword(self) -> None:
        keywords = [node.keyword for node in self.scopes.of_kind("block")]
        self.assertEqual(keywords, ["for"])

    def test_macro_scope(self) -> None:
        macros = self.scopes.of_kind("macro")
        self.assertEqual([node.name for node in macros], ["SCALE"])
        self.assertEqual(macros[0].parent, 0)

    def test_token_scope_points_at_innermost(self) -> None:
        tokens = self.indexed.tokens
        break_idx = next(i for i, t in enumerate(tokens) if t.text == "break")
        self.assertEqual(self.indexed.scope_at(break_idx).kind, "switch")

    def test_children_are_ordered(self) -> None:
        for node in self.scopes:
            opens = [self.scopes[child].open_token for child in node.children]
            self.assertEqual(opens, sorted(opens))

    def test_ancestors(self) -> None:
        enum = self.scopes.of_kind("enum")[0]
        kinds = [node.kind for node in self.scopes.ancestors(enum.index)]
        self.assertEqual(kinds, ["struct", "file"])


class StructuralRecoveryTests(unittest.TestCase):
    def test_unclosed_brace_closes_at_eof(self) -> None:
        indexed = index("void Run(void)\n{\n   if (1)\n   {\n}\n")
        self.assertFalse(indexed.is_structurally_sound)
        function = indexed.scopes.of_kind("function")[0]
        self.assertEqual(function.close_token, len(indexed.tokens) - 1)

    def test_stray_closing_brace_is_reported_and_skipped(self) -> None:
        indexed = index("int g_a;\n}\nint g_b;\n")
        self.assertEqual(len(indexed.issues), 1)
        self.assertIn("unmatched", indexed.issues[0].message)
        self.assertEqual({sym.name for sym in indexed.symbols}, {"g_a", "g_b"})

    def test_initializer_braces_are_not_scopes(self) -> None:
        indexed = index("int g_table[] = { 1, 2, 3 };\nstruct Point g_origin = { 0, 0 };\n")
        self.assertEqual(len(indexed.scopes), 1)
        self.assertEqual({sym.name for sym in indexed.symbols}, {"g_table", "g_origin"})

    def test_extern_c_block_is_transparent(self) -> None:
        indexed = index('extern "C"\n{\nint g_shared;\n}\n')
        self.assertEqual(len(indexed.scopes), 1)
        self.assertIn(("g_shared", "global"), {(sym.name, sym.kind) for sym in indexed.symbols})


if __name__ == "__main__":
    unittest.main()
