from __future__ import annotations

import unittest

from wasmbuilder.toolchains import (
    GLOBAL_BASE,
    STACK_SIZE,
    WASM_MEMORY_SIZE,
    MemoryLayout,
    ToolchainDefinition,
    ToolchainRegistry,
)


class MemoryLayoutTests(unittest.TestCase):
    def test_defaults_match_reactor_layout(self) -> None:
        layout = MemoryLayout()
        self.assertEqual(layout.memory_size, 16 * 1024 * 1024)
        self.assertEqual(layout.stack_size, 2 * 1024 * 1024)
        self.assertEqual(layout.global_base, 4 * 1024 * 1024)

    def test_sizing_flags_pin_initial_and_max_memory(self) -> None:
        flags = MemoryLayout().sizing_flags()
        self.assertIn(f"-Wl,--initial-memory={WASM_MEMORY_SIZE}", flags)
        self.assertIn(f"-Wl,--max-memory={WASM_MEMORY_SIZE}", flags)
        self.assertIn(f"-Wl,-z,stack-size={STACK_SIZE}", flags)

    def test_placement_flags_put_stack_first(self) -> None:
        self.assertEqual(
            MemoryLayout().placement_flags(),
            ["-Wl,--import-memory", f"-Wl,--global-base={GLOBAL_BASE}", "-Wl,--stack-first"],
        )

    def test_rejects_sizes_off_page_boundary(self) -> None:
        with self.assertRaisesRegex(ValueError, "wasm page"):
            MemoryLayout(memory_size=WASM_MEMORY_SIZE + 1)

    def test_rejects_stack_overlapping_globals(self) -> None:
        with self.assertRaisesRegex(ValueError, "stack_size"):
            MemoryLayout(stack_size=8 * 1024 * 1024, global_base=4 * 1024 * 1024)

    def test_rejects_global_base_outside_memory(self) -> None:
        with self.assertRaisesRegex(ValueError, "global_base"):
            MemoryLayout(memory_size=4 * 1024 * 1024, global_base=4 * 1024 * 1024)

    def test_rejects_non_integer_values(self) -> None:
        with self.assertRaises(ValueError):
            MemoryLayout(stack_size=True)  # type: ignore[arg-type]

    def test_from_mapping_overrides_and_validates_keys(self) -> None:
        layout = MemoryLayout.from_mapping({"memory_size": 32 * 1024 * 1024})
        self.assertEqual(layout.memory_size, 32 * 1024 * 1024)
        self.assertEqual(layout.stack_size, STACK_SIZE)
        with self.assertRaisesRegex(ValueError, "unknown keys: heap"):
            MemoryLayout.from_mapping({"heap": 1})


class ToolchainDefinitionTests(unittest.TestCase):
    def test_shared_flags_carry_optimization_and_layout(self) -> None:
        flags = ToolchainDefinition(name="wasi-clang").shared_flags(MemoryLayout())
        self.assertEqual(flags[0], "-O3")
        self.assertIn("-flto", flags)
        self.assertIn("-Wl,--no-entry", flags)
        self.assertIn("-Wl,--lto-O3", flags)
        self.assertIn("--param=max-inline-insns-single=1000", flags)
        self.assertEqual(flags[-3:], tuple(MemoryLayout().sizing_flags()))

    def test_target_flags_enable_features(self) -> None:
        flags = ToolchainDefinition(name="wasi-clang").target_flags()
        self.assertEqual(flags[:3], ["--sysroot=/usr/share/wasi-sysroot", "-target", "wasm32-unknown-wasi"])
        self.assertIn("-mexec-model=reactor", flags)
        for feature in ("simd128", "bulk-memory", "multivalue", "nontrapping-fptoint", "sign-ext", "reference-types", "tail-call"):
            self.assertIn(f"-m{feature}", flags)

    def test_link_flags_export_allocator_and_table(self) -> None:
        flags = ToolchainDefinition(name="wasi-clang").link_flags()
        self.assertIn("-Wl,--export=malloc", flags)
        self.assertIn("-Wl,--export=free", flags)
        self.assertIn("-Wl,--export-table", flags)
        self.assertIn("-Wl,--allow-undefined", flags)

    def test_merge_mapping_replaces_given_keys_only(self) -> None:
        base = ToolchainDefinition(name="wasi-clang")
        merged = base.merge_mapping({"compiler": "clang-18", "features": "simd128 bulk-memory", "optimization_level": 2})
        self.assertEqual(merged.compiler, "clang-18")
        self.assertEqual(merged.features, ("simd128", "bulk-memory"))
        self.assertEqual(merged.sysroot, base.sysroot)
        self.assertIn("-Wl,--lto-O2", merged.shared_flags(MemoryLayout()))
        self.assertEqual(base.compiler, "clang")

    def test_merge_mapping_rejects_bad_optimization_level(self) -> None:
        with self.assertRaisesRegex(ValueError, "optimization_level"):
            ToolchainDefinition(name="t").merge_mapping({"optimization_level": 7})

    def test_from_mapping_rejects_unknown_keys(self) -> None:
        with self.assertRaisesRegex(ValueError, "unknown keys: linker"):
            ToolchainDefinition.from_mapping("custom", {"linker": "wasm-ld"})


class ToolchainRegistryTests(unittest.TestCase):
    def test_builtin_and_custom_definitions(self) -> None:
        registry = ToolchainRegistry.with_builtins()
        registry.merge_from_mapping({"clang-18": {"compiler": "clang-18"}, "wasi-clang": {"sysroot": "/opt/wasi"}})
        self.assertEqual(registry.require("clang-18").compiler, "clang-18")
        self.assertEqual(registry.require("WASI-CLANG").sysroot, "/opt/wasi")

    def test_require_lists_available_toolchains(self) -> None:
        registry = ToolchainRegistry.with_builtins()
        with self.assertRaisesRegex(ValueError, "Available toolchains: wasi-clang"):
            registry.require("gcc")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
