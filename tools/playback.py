"""
Playback — rebuilds a participant's scene from the story log.

The scene (background, CG overlay, one sprite per character, last line of
dialogue) is a pure fold over a prefix of ``story_log``. Catch-up folds
everything the participant has already seen silently, then replays the
rest as a series of beats:

- background, sprite and CG changes pile up without pausing;
- dialogue and choice selections close the current beat and wait for the
  participant to advance;
- dice rolls, stat changes and quest notices ride along as notes on the
  next beat;
- a choice that nobody has answered yet closes a blocking beat and halts
  playback, because it needs a live decision. A choice that already has
  entries after it is shown as an ordinary beat.

``PlaybackSession`` never touches ``last_seen_log_index`` itself. The caller
marks the participant as caught up (``seen_index``) once ``reached_end`` is
true, so a playback cut short by a disconnect starts over from the same
place next time.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from models.characters import Character
from models.session import Player, SessionState
from models.story_log import (
    BackgroundChangeEntry,
    CgShowEntry,
    Choice,
    ChoiceEntry,
    ChoiceSelectionEntry,
    DialogueEntry,
    DiceRollEntry,
    QuestStatusEntry,
    SpriteChangeEntry,
    StatChangeEntry,
)
from tools.dice_roller import format_roll

logger = logging.getLogger("Playback")

NARRATOR_NAME = "Narrator"


class DialogueLine(BaseModel):
    speaker: str
    text: str


class SceneState(BaseModel):
    """What is on screen, as asset ids. Ids may dangle; resolve before drawing."""

    background_asset_id: Optional[str] = None
    cg_asset_id: Optional[str] = None
    sprites: Dict[str, Optional[str]] = {}
    dialogue: Optional[DialogueLine] = None


class ResolvedSprite(BaseModel):
    character_id: str
    name: str
    url: str


class ResolvedScene(BaseModel):
    """A scene ready for the rendering layer: URLs and text only."""

    background_url: Optional[str] = None
    cg_url: Optional[str] = None
    sprites: List[ResolvedSprite] = []
    dialogue: Optional[DialogueLine] = None


class Beat(BaseModel):
    """One pause point. Covers log entries ``[start_index, end_index)``."""

    start_index: int
    end_index: int
    scene: SceneState
    notes: List[str] = []
    blocking: bool = False
    choices: List[Choice] = []


class _Names:
    """Character and player name lookup for narration."""

    def __init__(self, characters: Sequence[Character], players: Sequence[Player]):
        self.characters = {c.id: c.name for c in characters}
        self.players = {p.id: p.name for p in players}

    def character(self, character_id: str, default: str = NARRATOR_NAME) -> str:
        return self.characters.get(character_id, default)


def _apply(scene: SceneState, entry, names: _Names) -> SceneState:
    if isinstance(entry, BackgroundChangeEntry):
        return scene.model_copy(update={"background_asset_id": entry.asset_id})
    if isinstance(entry, CgShowEntry):
        return scene.model_copy(update={"cg_asset_id": entry.asset_id})
    if isinstance(entry, SpriteChangeEntry):
        sprites = dict(scene.sprites)
        sprites[entry.character_id] = entry.asset_id
        return scene.model_copy(update={"sprites": sprites})
    if isinstance(entry, DialogueEntry):
        line = DialogueLine(speaker=names.character(entry.character_id), text=entry.text)
        return scene.model_copy(update={"dialogue": line})
    if isinstance(entry, ChoiceSelectionEntry):
        chooser = names.players.get(entry.player_id) or names.character(entry.character_id, "A player")
        line = DialogueLine(speaker=NARRATOR_NAME, text=f'{chooser} chose: "{entry.choice.text}"')
        return scene.model_copy(update={"dialogue": line})
    return scene


def _note(entry, names: _Names) -> Optional[str]:
    if isinstance(entry, DiceRollEntry):
        return format_roll(entry, names.character(entry.character_id))
    if isinstance(entry, (StatChangeEntry, QuestStatusEntry)):
        return entry.text
    return None


def fold_scene(
    entries: Sequence,
    characters: Sequence[Character] = (),
    players: Sequence[Player] = (),
    scene: Optional[SceneState] = None,
) -> SceneState:
    """Fold log entries into a scene, starting from ``scene`` or a blank one."""
    names = _Names(characters, players)
    scene = scene or SceneState()
    for entry in entries:
        scene = _apply(scene, entry, names)
    return scene


def current_scene(state: SessionState) -> SceneState:
    return fold_scene(state.story_log, state.characters, state.players)


def resolve_scene(scene: SceneState, state: SessionState) -> ResolvedScene:
    """Swap asset ids for URLs. Unknown or deleted assets resolve to nothing."""
    def url(asset_id: Optional[str]) -> Optional[str]:
        asset = state.find_asset(asset_id)
        return asset.url if asset else None

    sprites = []
    for character_id, asset_id in scene.sprites.items():
        sprite_url = url(asset_id)
        character = state.find_character(character_id)
        if sprite_url and character:
            sprites.append(ResolvedSprite(character_id=character_id, name=character.name, url=sprite_url))
    return ResolvedScene(
        background_url=url(scene.background_asset_id),
        cg_url=url(scene.cg_asset_id),
        sprites=sprites,
        dialogue=scene.dialogue,
    )


def plan_catch_up(
    log: Sequence,
    last_seen: int,
    characters: Sequence[Character] = (),
    players: Sequence[Player] = (),
) -> Tuple[SceneState, List[Beat]]:
    """Split the unseen tail of ``log`` into beats.

    Returns the silently folded starting scene and the beats to show, in order.
    """
    last_seen = min(max(last_seen, 0), len(log))
    names = _Names(characters, players)
    start = fold_scene(log[:last_seen], characters, players)

    beats: List[Beat] = []
    scene = start
    notes: List[str] = []
    beat_start = last_seen
    pending = False

    for i in range(last_seen, len(log)):
        entry = log[i]
        if isinstance(entry, ChoiceEntry):
            is_open = i == len(log) - 1
            beats.append(Beat(
                start_index=beat_start,
                end_index=i + 1,
                scene=scene,
                notes=notes,
                blocking=is_open,
                choices=list(entry.choices),
            ))
            notes, beat_start, pending = [], i + 1, False
            if is_open:
                return start, beats
            continue

        scene = _apply(scene, entry, names)
        if isinstance(entry, (DialogueEntry, ChoiceSelectionEntry)):
            beats.append(Beat(start_index=beat_start, end_index=i + 1, scene=scene, notes=notes))
            notes, beat_start, pending = [], i + 1, False
            continue

        note = _note(entry, names)
        if note:
            notes.append(note)
        pending = True

    if pending:
        beats.append(Beat(start_index=beat_start, end_index=len(log), scene=scene, notes=notes))
    return start, beats


class PlaybackSession:
    """Steps a participant through the beats they missed.

    Usage:
        playback = PlaybackSession(state, player.last_seen_log_index)
        beat = playback.advance()       # first beat
        ...                             # advance() on each click
        if playback.reached_end:
            mark_seen(playback.seen_index)
    """

    def __init__(self, state: SessionState, last_seen: int):
        self.seen_index: int = len(state.story_log)
        self.start_scene, self.beats = plan_catch_up(
            state.story_log, last_seen, state.characters, state.players,
        )
        self._position = -1

    @property
    def current_beat(self) -> Optional[Beat]:
        if 0 <= self._position < len(self.beats):
            return self.beats[self._position]
        return None

    @property
    def scene(self) -> SceneState:
        """The scene to show right now."""
        beat = self.current_beat
        if beat is not None:
            return beat.scene
        if self._position >= len(self.beats) and self.beats:
            return self.beats[-1].scene
        return self.start_scene

    @property
    def is_halted(self) -> bool:
        """True while showing an unanswered choice; advancing does nothing."""
        beat = self.current_beat
        return beat is not None and beat.blocking

    @property
    def reached_end(self) -> bool:
        if not self.beats:
            return True
        return self._position >= len(self.beats) or self.is_halted

    def advance(self) -> Optional[Beat]:
        """Move to the next beat. Returns None once playback is over."""
        if self.is_halted:
            return self.current_beat
        if self._position < len(self.beats):
            self._position += 1
        beat = self.current_beat
        if beat is None:
            logger.debug(f"Playback finished at log index {self.seen_index}")
        return beat
