import logging
from typing import Optional

from .api_client import SimulationClient
from .playback import AudioOutput, AudioPlayer, SpeechSynthesizer, create_client_cache

logger = logging.getLogger(__name__)


class AppContext:
    """
    Client-wide state built once at startup and passed to whoever needs it:
    the API client, the response audio cache and the single audio player.
    """

    def __init__(self, api_client: SimulationClient, output: Optional[AudioOutput] = None,
                 synthesizer: Optional[SpeechSynthesizer] = None, voice_id: str = None):
        self.api_client = api_client
        self.audio_cache = create_client_cache()
        self.player = AudioPlayer(
            api_client=api_client,
            output=output,
            cache=self.audio_cache,
            synthesizer=synthesizer,
            voice_id=voice_id,
        )

    async def close(self):
        self.player.stop_current()
        self.audio_cache.clear()
        await self.api_client.close()
        logger.info("AppContext: Closed")
