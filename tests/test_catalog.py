import pytest
import yaml

from cron_bridge.catalog import DISCOVERED_OPTION, CatalogReconciler, interval_name
from cron_bridge.errors import CatalogError
from cron_bridge.intervals import IntervalPolicy
from cron_bridge.models import CatalogEntry
from cron_bridge.options import OptionStore
from tests.utils.threads import run_workers


@pytest.fixture
def reconciler(polling, options, hooks):
    reconciler = CatalogReconciler(polling.list_catalog, options)
    IntervalPolicy(discovered=reconciler.discovered).attach(hooks)
    return reconciler


def test_existing_interval_is_found(reconciler):
    assert reconciler.find_or_create(3600) == "hourly"
    assert reconciler.find(86400) == "daily"


def test_find_or_create_is_idempotent(reconciler, polling):
    first = reconciler.find_or_create(7200)
    second = reconciler.find_or_create(7200)

    assert first == second == interval_name(7200)
    matches = [e for e in polling.list_catalog().values() if e.interval_seconds == 7200]
    assert len(matches) == 1
    assert polling.resolve_schedule(first).seconds == 7200


def test_first_entry_wins_for_duplicate_intervals(hooks, options, polling):
    def extra(catalog):
        catalog = dict(catalog)
        catalog["hourly_alias"] = CatalogEntry("hourly_alias", 3600)
        return catalog

    hooks.add_filter("cron_schedules", extra)
    reconciler = CatalogReconciler(polling.list_catalog, options)
    assert reconciler.find(3600) == "hourly"


def test_created_entries_are_persisted(reconciler, options, tmp_path):
    name = reconciler.find_or_create(90)
    data = yaml.safe_load((tmp_path / "options.yml").read_text())
    assert data[DISCOVERED_OPTION][name]["interval"] == 90
    assert reconciler.discovered()[name].display_label.endswith("every 90 seconds")


@pytest.mark.parametrize("bad", [0, -5, 2.5])
def test_invalid_intervals_are_rejected(reconciler, bad):
    with pytest.raises(CatalogError):
        reconciler.find_or_create(bad)


def test_concurrent_creation_adds_one_entry(reconciler, options):
    names = []

    def worker(_):
        names.append(reconciler.find_or_create(1234))

    run_workers(worker, workers=4, iterations=5)

    assert set(names) == {interval_name(1234)}
    assert list(options.get(DISCOVERED_OPTION)) == [interval_name(1234)]


def test_created_name_does_not_replace_configured_entry(polling, options, hooks):
    taken = interval_name(600)
    reconciler = CatalogReconciler(polling.list_catalog, options)
    IntervalPolicy(
        static_entries={taken: CatalogEntry(taken, 900, "Configured")},
        discovered=reconciler.discovered,
    ).attach(hooks)

    name = reconciler.find_or_create(600)

    assert name == f"{taken}_2"
    assert reconciler.find_or_create(600) == name
    catalog = polling.list_catalog()
    assert catalog[taken].interval_seconds == 900
    assert catalog[name].interval_seconds == 600
    assert polling.resolve_schedule(name).seconds == 600


def test_created_entries_survive_writes_from_another_store(polling, hooks, tmp_path):
    path = tmp_path / "shared.yml"
    other = OptionStore(path)
    reconciler = CatalogReconciler(polling.list_catalog, OptionStore(path))
    IntervalPolicy(discovered=reconciler.discovered).attach(hooks)

    name = reconciler.find_or_create(1234)
    other.update("cron", {"version": 2})

    assert name in OptionStore(path).get(DISCOVERED_OPTION)
