import sys
from functools import partial
from pathlib import Path

from configurator import LaunchConfigurator
from core import BepInExInstaller, Config, UnityGame
from detection import SCRIPT_NAME, get_bepinex_script_path, get_unity_app_path
from errors import InstallerError, UserCancelledError
from launchers.epic import EpicGamesLauncher
from launchers.steam import SteamLauncher
from prompts import alert, confirm, prompt
from updater import fetch_replacement_pack
from verification import VerificationLoop, raise_for_outcome


PATH_INSTRUCTIONS = (
    "  - drag it into this window, or\n"
    "  - select it in Finder, press Option Command C to copy its path, then Command V to paste it here."
)


def log(message: str) -> None:
    print(message, flush=True)


def error(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


def ask_for_pack() -> Path:
    return prompt(
        f"Open the Finder window with your copy of BepInEx, locate the {SCRIPT_NAME} script, then either:\n"
        f"{PATH_INSTRUCTIONS}",
        get_bepinex_script_path,
    )


def ask_for_game(config: Config, steam: SteamLauncher) -> Path:
    return prompt(
        "Open the Finder window where your Unity game is located, find the app (e.g. Subnautica.app), then either:\n"
        f"{PATH_INSTRUCTIONS}",
        partial(get_unity_app_path, n=config.UnityIndicators.get(), steam=steam),
    )


def run(config: Config) -> None:
    steam = SteamLauncher(logger=log, quit_timeout=config.QuitTimeout.get())
    epic = EpicGamesLauncher(logger=log)
    installer = BepInExInstaller(logger=log)

    script_path = ask_for_pack()
    log("")
    app_path = ask_for_game(config, steam)
    game_path = app_path.parent

    log("")
    log(f"BepInEx will be installed from:\n  {script_path.parent}\nto the Unity game at:\n  {game_path}")
    log("This may overwrite files in the game folder.")
    if not confirm("Proceed?"):
        raise UserCancelledError()

    configurator = LaunchConfigurator(
        steam,
        epic,
        installer,
        confirm=confirm,
        fetch_pack=partial(
            fetch_replacement_pack,
            config.ReleaseApiUrl.get(),
            config.FallbackPackUrl.get(),
            logger=log,
        ),
        logger=log,
    )
    launch = configurator.configure(script_path, app_path)

    log("")
    log("Finally, let's test that everything is working.")
    alert("The game will be launched. Quit to desktop once you reach the main menu.")

    verification = VerificationLoop.for_game(
        UnityGame(app_path),
        wait_timeout=config.WaitTimeout.get(),
        poll_interval=config.PollInterval.get(),
        logger=log,
    )
    try:
        outcome = verification.run(launch)
    finally:
        configurator.reap()
    raise_for_outcome(outcome)

    log("")
    log("Successfully detected BepInEx running!")
    log("You're now ready to install mods.")


def main() -> int:
    config = Config()
    try:
        run(config)
    except InstallerError as e:
        error(f"\n{e}")
        if e.path:
            error(e.path)
        return 1
    except OSError as e:
        error(f"\n{e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
