import importlib
import os
from unittest.mock import patch

from django.test import SimpleTestCase, override_settings, tag

from config import settings as project_settings
from config.vite import Vite, clear_manifest_cache, get_vite, vite
from tests.utils.vite_fixtures import APP_MANIFEST, ViteFixtureMixin


@tag("batch_vite")
class ViteFromSettingsTests(ViteFixtureMixin, SimpleTestCase):
    def setUp(self):
        super().setUp()
        settings_override = override_settings(VITE_INDEX_ROOT=str(self.index_root))
        settings_override.enable()
        self.addCleanup(settings_override.disable)
        self.addCleanup(clear_manifest_cache)

    def test_defaults(self):
        instance = Vite.from_settings()

        self.assertEqual(instance.manifest_path(), self.index_root / "build" / "manifest.json")
        self.assertEqual(instance.hot_file(), self.index_root / "hot")
        self.assertIsNone(instance.nonce())
        self.assertEqual(instance.entries(), ["src/main.ts"])

    @override_settings(
        VITE_BUILD_DIRECTORY="dist",
        VITE_MANIFEST="vite.json",
        VITE_NONCE="fixed",
        VITE_INTEGRITY=False,
        VITE_ENTRIES=["main.js"],
    )
    def test_options_are_applied(self):
        self.write_manifest({"main.js": {"file": "main.1.js", "integrity": "sha384-x"}}, "dist", "vite.json")

        html = str(Vite.from_settings())

        self.assertIn('<script type="module" src="/static/dist/main.1.js" nonce="fixed"></script>', html)
        self.assertNotIn("integrity", html)

    @override_settings(VITE_NONCE=True)
    def test_nonce_true_generates_one(self):
        self.assertEqual(len(Vite.from_settings().nonce()), 40)

    def test_hot_file_setting(self):
        hot_file = self.write_hot_file(path=self.root / "dev-server")

        with override_settings(VITE_HOT_FILE=str(hot_file)):
            self.assertTrue(Vite.from_settings().is_running_hot())

    @override_settings(
        VITE_SCRIPT_TAG_ATTRIBUTES=[{"crossorigin": "use-credentials"}, "tests.utils.vite_fixtures.crossorigin_attributes"],
        VITE_STYLE_TAG_ATTRIBUTES={"media": "screen"},
        VITE_PRELOAD_TAG_ATTRIBUTES=lambda src, url, chunk, manifest: {"data-entry": src},
    )
    def test_attribute_settings(self):
        self.write_manifest(APP_MANIFEST)

        html = Vite.from_settings().resolve(["main.js"])

        self.assertIn(
            '<script type="module" src="/static/build/main.abc123.js" crossorigin="anonymous"></script>',
            html,
        )
        self.assertIn('<link rel="stylesheet" href="/static/build/main.abc123.css" media="screen">', html)
        self.assertIn(
            '<link rel="modulepreload" href="/static/build/dep.abc123.js" crossorigin="anonymous" data-entry="dep.js">',
            html,
        )

    def test_shared_instance_is_reused(self):
        self.assertIs(get_vite(), get_vite())
        self.assertIs(vite(), get_vite())

    def test_shared_instance_follows_setting_changes(self):
        before = get_vite()

        with override_settings(VITE_BUILD_DIRECTORY="admin"):
            during = get_vite()

        self.assertIsNot(before, during)
        self.assertEqual(during.manifest_path(), self.index_root / "admin" / "manifest.json")
        self.assertEqual(get_vite().manifest_path(), self.index_root / "build" / "manifest.json")

    def test_helper_renders_entries(self):
        self.write_manifest(APP_MANIFEST)

        self.assertEqual(vite("main.js"), get_vite().resolve(["main.js"]))


@tag("batch_vite")
class ViteEnvironmentVariableTests(SimpleTestCase):
    def _reload_settings(self, **environ):
        with patch.dict(os.environ, environ):
            module = importlib.reload(project_settings)
        self.addCleanup(importlib.reload, project_settings)
        return module

    def test_nonce_flag_generates_one(self):
        for value in ("true", "1", "on", "True"):
            with self.subTest(value=value):
                self.assertIs(self._reload_settings(VITE_NONCE=value).VITE_NONCE, True)

    def test_fixed_nonce(self):
        self.assertEqual(self._reload_settings(VITE_NONCE="abc123").VITE_NONCE, "abc123")

    def test_nonce_unset(self):
        with patch.dict(os.environ):
            os.environ.pop("VITE_NONCE", None)
            module = importlib.reload(project_settings)
        self.addCleanup(importlib.reload, project_settings)

        self.assertIsNone(module.VITE_NONCE)

    def test_integrity_can_be_disabled(self):
        self.assertIs(self._reload_settings(VITE_INTEGRITY="off").VITE_INTEGRITY, False)
