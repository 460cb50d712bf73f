import zlib

from conftest import ACCOUNT_ID, STEAM_ID, make_steam, write_text_vdf
from formats import find_key, get_ci, read_shortcuts, read_vdf, write_shortcuts
from launchers.base import AppRef
from launchers.steam import SteamLauncher, to_account_id
import launchers.steam
from utils import ProcessInfo


def _localconfig(steam: SteamLauncher):
    return steam.steam_path / "userdata" / str(ACCOUNT_ID) / "config" / "localconfig.vdf"


# --- Shortcuts ---

def test_add_shortcut_to_empty_list():
    shortcuts = SteamLauncher.add_shortcut({"AppName": "A"}, {"shortcuts": {}})
    assert shortcuts == {"shortcuts": {"0": {"AppName": "A"}}}


def test_add_shortcut_to_sparse_list():
    existing = {"0": {"AppName": "First"}, "7": {"AppName": "Seventh"}}
    shortcuts = SteamLauncher.add_shortcut({"AppName": "New"}, {"shortcuts": dict(existing)})

    assert shortcuts["shortcuts"]["8"] == {"AppName": "New"}
    for key, value in existing.items():
        assert shortcuts["shortcuts"][key] == value


def test_add_shortcuts_in_order():
    shortcuts = SteamLauncher.add_shortcuts(
        [{"AppName": "B"}, {"AppName": "C"}],
        {"Shortcuts": {"2": {"AppName": "A"}}},
    )
    assert list(shortcuts["Shortcuts"]) == ["2", "3", "4"]
    assert shortcuts["Shortcuts"]["4"] == {"AppName": "C"}


def test_shortcuts_round_trip(tmp_path):
    path = tmp_path / "shortcuts.vdf"
    shortcuts = {"shortcuts": {"3": SteamLauncher.make_shortcut("Old", "/Games/Old.app/Contents/MacOS/Old")}}
    SteamLauncher.add_shortcut(SteamLauncher.make_shortcut("New", "/Games/New.app/Contents/MacOS/launch"), shortcuts)

    write_shortcuts(path, shortcuts)

    assert read_shortcuts(path) == shortcuts


def test_missing_shortcuts_file_reads_empty(tmp_path):
    assert read_shortcuts(tmp_path / "missing" / "shortcuts.vdf") == {"shortcuts": {}}


def test_shortcut_app_id():
    shortcut = SteamLauncher.make_shortcut("Game (Vanilla)", "/Games/Game (Vanilla).app/Contents/MacOS/launch")
    exe = '"/Games/Game (Vanilla).app/Contents/MacOS/launch"'
    unsigned = (zlib.crc32((exe + "Game (Vanilla)\x00").encode("utf-8")) & 0xFFFFFFFF) | 0x80000000

    assert shortcut["Exe"] == exe
    assert shortcut["StartDir"] == '"/Games/Game (Vanilla).app/Contents/MacOS"'
    assert shortcut["appid"] < 0
    assert shortcut["appid"] & 0xFFFFFFFF == unsigned


def test_get_and_set_shortcuts(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    shortcuts = steam.get_shortcuts()
    assert shortcuts == {"shortcuts": {}}

    SteamLauncher.add_shortcut(SteamLauncher.make_shortcut("Game", "/Games/Game.app"), shortcuts)
    assert steam.set_shortcuts(shortcuts)

    path = steam.steam_path / "userdata" / str(ACCOUNT_ID) / "config" / "shortcuts.vdf"
    assert path.is_file()
    assert get_ci(steam.get_shortcuts(), "shortcuts", "0", "AppName") == "Game"


# --- Users ---

def test_account_id():
    assert to_account_id(STEAM_ID) == ACCOUNT_ID
    assert to_account_id(ACCOUNT_ID) == ACCOUNT_ID


def test_most_recent_user(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    user = steam.get_most_recent_user()
    assert user.steam_id == STEAM_ID
    assert user.account_id == ACCOUNT_ID


def test_most_recent_user_tie_broken_by_timestamp(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    write_text_vdf(steam.loginusers_path, {"users": {
        "76561197960287931": {"MostRecent": "1", "Timestamp": "100"},
        "76561197960287932": {"mostrecent": "1", "Timestamp": "200"},
    }})
    assert steam.get_most_recent_user().steam_id == "76561197960287932"


def test_no_users(tmp_path):
    steam = SteamLauncher(tmp_path / "Steam")
    assert steam.get_most_recent_user() is None
    assert steam.get_shortcuts() is None
    assert steam.set_launch_options("123", "x") is False


# --- Apps ---

def test_get_apps(tmp_path):
    library = tmp_path / "Library"
    steam = make_steam(tmp_path, [library], {
        "123": {"installdir": "Game", "name": "Game"},
        "456": {"installdir": "Other", "name": "Other"},
    })

    apps = {app.id: app for app in steam.get_apps()}
    assert set(apps) == {"123", "456"}
    assert apps["123"].path == library / "steamapps" / "common" / "Game"
    assert apps["123"].launcher == "Steam"
    assert steam.get_app_by_id("456").name == "Other"
    assert steam.get_app_by_id("789") is None


def test_apps_by_path_through_symlinked_library(tmp_path):
    real_library = tmp_path / "Volumes" / "Games"
    link = tmp_path / "SteamLibrary"
    real_library.mkdir(parents=True)
    link.symlink_to(real_library, target_is_directory=True)
    steam = make_steam(tmp_path, [link], {"123": {"installdir": "Game"}})
    (real_library / "steamapps" / "common" / "Game").mkdir(parents=True)

    apps = list(steam.get_apps_by_path(real_library / "steamapps" / "common" / "Game"))

    assert [app.id for app in apps] == ["123"]


def test_apps_by_path_outside_library_with_string_prefix(tmp_path):
    library = tmp_path / "Lib"
    steam = make_steam(tmp_path, [library], {"123": {"installdir": "Game"}})
    outside = tmp_path / "Lib2" / "steamapps" / "common" / "Game"
    outside.mkdir(parents=True)

    assert list(steam.get_apps_by_path(outside)) == []
    assert steam.get_app_by_path(outside) is None


def test_apps_by_path_through_symlink_leaving_library(tmp_path):
    library = tmp_path / "Lib"
    steam = make_steam(tmp_path, [library], {"123": {"installdir": "Game"}})
    elsewhere = tmp_path / "Elsewhere" / "steamapps" / "common"
    elsewhere.mkdir(parents=True)
    (library / "steamapps" / "common").mkdir(parents=True)
    (library / "steamapps" / "common" / "Game").symlink_to(elsewhere, target_is_directory=True)

    assert list(steam.get_apps_by_path(library / "steamapps" / "common" / "Game")) == []


def test_apps_by_path_needs_matching_installdir(tmp_path):
    library = tmp_path / "Lib"
    steam = make_steam(tmp_path, [library], {"123": {"installdir": "Game"}})
    other = library / "steamapps" / "common" / "Unknown"
    other.mkdir(parents=True)

    assert list(steam.get_apps_by_path(other)) == []


# --- Launch options ---

def test_set_launch_options_changes_one_field(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    tree = {"UserLocalConfigStore": {
        "Friends": {"PersonaName": 'Say "hi"', "Path": "C:\\Games"},
        "Software": {"Valve": {"Steam": {
            "SmallMode": "0",
            "apps": {
                "123": {"LastPlayed": "1700000000", "LaunchOptions": "", "cloud": {"last_sync_state": "synchronized"}},
                "456": {"LaunchOptions": "-windowed"},
            },
        }}},
    }}
    write_text_vdf(_localconfig(steam), tree)
    before = read_vdf(_localconfig(steam))
    options = '"/Games/Game/run_bepinex.sh" "%command%"'

    assert steam.set_launch_options(AppRef.of_id("123"), options)

    after = read_vdf(_localconfig(steam))
    assert get_ci(after, "UserLocalConfigStore", "Software", "Valve", "Steam", "apps", "123", "LaunchOptions") == options
    assert steam.get_launch_options("123") == options
    before["UserLocalConfigStore"]["Software"]["Valve"]["Steam"]["apps"]["123"]["LaunchOptions"] = options
    assert after == before
    assert '\\"%command%\\"' in _localconfig(steam).read_text(encoding="utf-8")


def test_set_launch_options_case_insensitive(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    write_text_vdf(_localconfig(steam), {"UserLocalConfigStore": {"software": {"valve": {"steam": {
        "Apps": {"123": {"launchoptions": "-old"}},
    }}}}})

    assert steam.set_launch_options("123", "-new")

    apps = read_vdf(_localconfig(steam))["UserLocalConfigStore"]["software"]["valve"]["steam"]["Apps"]
    assert apps["123"] == {"launchoptions": "-new"}


def test_set_launch_options_without_app_entry(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    write_text_vdf(_localconfig(steam), {"UserLocalConfigStore": {"Software": {"Valve": {"Steam": {"apps": {}}}}}})
    original = _localconfig(steam).read_bytes()

    assert steam.set_launch_options("123", "-new") is False
    assert _localconfig(steam).read_bytes() == original


# --- Processes ---

def test_processes_filtered_to_steam_folder(tmp_path, monkeypatch):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    inside = str(steam.steam_path / "Steam.AppBundle" / "Steam" / "Contents" / "MacOS" / "steam_osx")
    processes = [
        ProcessInfo(1, "steam_osx", inside, 1),
        ProcessInfo(2, "steamwebhelper", inside, 1),
        ProcessInfo(3, "steam_osx", inside, 1234),
        ProcessInfo(4, "steam", "/usr/local/bin/steam", 1),
        ProcessInfo(5, "steam", None, None),
    ]
    monkeypatch.setattr(launchers.steam, "find_processes_by_name", lambda name, exact=False: processes)

    assert [process.pid for process in steam.get_processes()] == [1, 2]


def test_quit_force_kills_after_timeout(tmp_path, monkeypatch):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    exe = str(steam.steam_path / "steam_osx")
    opened, killed = [], []
    monkeypatch.setattr(launchers.steam, "find_processes_by_name", lambda name, exact=False: [ProcessInfo(9, "steam_osx", exe, 1)])
    monkeypatch.setattr(launchers.steam, "open_url", lambda url, background=False: opened.append(url))
    monkeypatch.setattr(launchers.steam, "kill_process", lambda pid: killed.append(pid) or True)

    assert steam.quit() is True
    assert opened == ["steam://exit"]
    assert killed == [9]


def test_quit_when_not_running(tmp_path, monkeypatch):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    opened = []
    monkeypatch.setattr(launchers.steam, "open_url", lambda url, background=False: opened.append(url))
    assert steam.quit() is True
    assert opened == []


def test_launch(tmp_path, monkeypatch):
    steam = make_steam(tmp_path, [tmp_path / "Library"], {"123": {"installdir": "Game"}})
    opened = []
    monkeypatch.setattr("launchers.base.open_url", lambda url, background=False: opened.append(url))

    assert steam.launch(AppRef.of_id("123")) is True
    assert steam.launch("999") is False
    assert opened == ["steam://rungameid/123"]


def test_find_key_prefers_exact_match():
    assert find_key({"apps": 1, "Apps": 2}, "Apps") == "Apps"
    assert find_key({"apps": 1}, "APPS") == "apps"
    assert find_key({}, "apps") is None


def test_set_launch_options_when_steam_will_not_quit(tmp_path, monkeypatch):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    write_text_vdf(_localconfig(steam), {"UserLocalConfigStore": {"Software": {"Valve": {"Steam": {
        "apps": {"123": {"LaunchOptions": "-old"}},
    }}}}})
    original = _localconfig(steam).read_bytes()
    monkeypatch.setattr(steam, "quit", lambda timeout=None: False)

    assert steam.set_launch_options("123", "-new") is False
    assert _localconfig(steam).read_bytes() == original


def test_set_launch_options_without_localconfig(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])

    assert steam.set_launch_options("123", "-new") is False
    assert not _localconfig(steam).exists()


def test_set_launch_options_with_corrupt_localconfig(tmp_path):
    steam = make_steam(tmp_path, [tmp_path / "Library"])
    _localconfig(steam).parent.mkdir(parents=True)
    _localconfig(steam).write_text('"UserLocalConfigStore"\n{\n\t"Software"\n\t{\n', encoding="utf-8")
    original = _localconfig(steam).read_bytes()

    assert steam.set_launch_options("123", "-new") is False
    assert _localconfig(steam).read_bytes() == original


def test_apps_by_path_matches_unresolved_folder_name(tmp_path):
    library = tmp_path / "Lib"
    steam = make_steam(tmp_path, [library], {"123": {"installdir": "Game"}})
    common = library / "steamapps" / "common"
    (common / "Game v2").mkdir(parents=True)
    (common / "Game").symlink_to(common / "Game v2", target_is_directory=True)

    assert [app.id for app in steam.get_apps_by_path(common / "Game")] == ["123"]
    assert list(steam.get_apps_by_path(common / "Game v2")) == []
