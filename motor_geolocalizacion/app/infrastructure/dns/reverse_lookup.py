"""
reverse_lookup.py
-----------------
Resolución DNS reversa (PTR) con timeout.

socket.gethostbyaddr es bloqueante, así que corre en el executor por
defecto del loop y se abandona si supera el timeout. Nunca lanza:
sin respuesta → None.
"""

import asyncio
import logging
import socket
from typing import Optional

logger = logging.getLogger(__name__)


class DnsReverseLookup:

    def __init__(self, timeout_sec: float = 1.0):
        self.timeout_sec = timeout_sec

    async def lookup(self, ip: str) -> Optional[str]:
        loop = asyncio.get_running_loop()
        try:
            hostname, _aliases, _addresses = await asyncio.wait_for(
                loop.run_in_executor(None, socket.gethostbyaddr, ip),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[ReverseDNS] Timeout ({self.timeout_sec}s)  ip={ip}")
            return None
        except (OSError, UnicodeError, ValueError) as e:
            # herror/gaierror heredan de OSError: IP sin registro PTR
            logger.debug(f"[ReverseDNS] Sin PTR  ip={ip}  error={e}")
            return None

        if not hostname or hostname == ip:
            return None
        return hostname
