"""
Architecture Hygiene Tests

Keep zone arithmetic in one place and the dependency direction between
apps one-way: core <- timezones <- medications <- doses/transitions.
"""
import re
from pathlib import Path

import pytest
from django.conf import settings

APPS_DIR = Path(settings.BASE_DIR) / 'apps'


def _source_files(*parts):
    root = APPS_DIR.joinpath(*parts)
    for py_file in root.rglob('*.py'):
        if any(skip in py_file.parts for skip in ['migrations', '__pycache__']):
            continue
        yield py_file


def _violations(pattern, files):
    regex = re.compile(pattern)
    found = []
    for py_file in files:
        content = py_file.read_text(encoding='utf-8')
        for lineno, line in enumerate(content.splitlines(), start=1):
            if regex.search(line):
                found.append(f"{py_file.relative_to(APPS_DIR)}:{lineno}: {line.strip()}")
    return found


class TestZoneArithmeticIsolated:
    """
    Only ZoneClock talks to the zone database.

    Everything else goes through ZoneClock so that gap/fold policy is
    applied consistently.
    """

    def test_pytz_localize_only_in_clock(self):
        files = [f for f in _source_files() if f.name != 'clock.py']
        violations = _violations(r'\.localize\(|pytz\.timezone\(', files)

        assert not violations, (
            "Zone lookups outside apps/timezones/clock.py:\n" + "\n".join(violations)
        )

    def test_no_naive_now(self):
        violations = _violations(r'utcnow\(|datetime\.now\(\)|date\.today\(\)', _source_files())

        assert not violations, (
            "Naive clock reads found; inject ZoneClock.now instead:\n" + "\n".join(violations)
        )


class TestDependencyDirection:

    @pytest.mark.parametrize('app,forbidden', [
        ('core', r'from apps\.(timezones|medications|doses|transitions)'),
        ('timezones', r'from apps\.(medications|doses|transitions)'),
        ('medications', r'from apps\.(doses|transitions)'),
    ])
    def test_lower_layers_do_not_import_upper(self, app, forbidden):
        violations = _violations(forbidden, _source_files(app))

        assert not violations, (
            f"apps.{app} imports from a higher layer:\n" + "\n".join(violations)
        )

    def test_installed_local_apps(self):
        local_apps = [app for app in settings.INSTALLED_APPS if app.startswith('apps.')]

        assert local_apps == ['apps.medications', 'apps.doses', 'apps.transitions']
