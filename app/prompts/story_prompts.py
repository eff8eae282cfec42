"""Prompts and fallbacks for suggesting a story to tell."""

STORY_PROMPT_SYSTEM_PROMPT = """You are a creative writing assistant who writes short story openings for people \
practising oral storytelling. Openings should be vivid, easy to read aloud, and leave room for the storyteller \
to continue in their own words."""

STORY_PROMPT_USER_TEMPLATE = """Write an original {genre} story opening of about {word_count} words.

Respond with a JSON object:
{{"title": "A short evocative title", "content": "The story opening"}}"""

WORD_COUNTS = {"short": 120, "medium": 250, "long": 400}

FALLBACK_STORIES: dict[str, dict[str, str]] = {
    "adventure": {
        "title": "The Map in the Attic",
        "content": (
            "Under a loose floorboard in her grandmother's attic, Maya found a map drawn in faded ink. "
            "An X marked a spot on the cliffs above the harbor, and beside it someone had written: "
            "'Only at low tide.' The tide tables said tomorrow, at dawn."
        ),
    },
    "mystery": {
        "title": "The Clock That Ran Backwards",
        "content": (
            "Every night at midnight the old clock in the library ran backwards for exactly one minute. "
            "Nobody in the village talked about it, until the night the librarian vanished and the clock "
            "kept running backwards long after the minute was up."
        ),
    },
    "fantasy": {
        "title": "The Last Dragon Keeper",
        "content": (
            "The egg had been cold for a hundred years, so when it cracked in Elara's hands she nearly "
            "dropped it. Something inside blinked up at her with eyes like molten gold, and far away, "
            "every bell in the capital began to ring."
        ),
    },
    "horror": {
        "title": "The Guest Room",
        "content": (
            "The house had a guest room nobody remembered building. Its door appeared the week after we "
            "moved in, painted the same pale green as the hallway, and every morning it was open a little "
            "wider than the night before."
        ),
    },
    "romance": {
        "title": "Letters to the Wrong Address",
        "content": (
            "For three months Sam had been receiving letters meant for someone called June. They were "
            "funny, and kind, and signed only with an initial. Tonight there was a new one, and it said: "
            "'If you are not June, please write back.'"
        ),
    },
    "sci-fi": {
        "title": "Signal from the Quiet Zone",
        "content": (
            "The radio telescope had listened to the silent patch of sky for forty years. At 3:14 a.m. it "
            "heard a voice, and the voice was reading out the names of everyone on the night shift."
        ),
    },
}
