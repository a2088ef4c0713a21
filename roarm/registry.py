"""
Robot Registry

Thread-safe name -> RobotController map for setups with several arms.
Lookups of unknown names raise UnknownRobot instead of returning None.
"""

import logging
import threading
from typing import Dict, List, Optional

from roarm.config import RobotConfig
from roarm.errors import UnknownRobot
from roarm.robot import RobotController

logger = logging.getLogger(__name__)


class RobotRegistry:

    def __init__(self):
        self._robots: Dict[str, RobotController] = {}
        self._lock = threading.Lock()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._robots

    def __len__(self) -> int:
        with self._lock:
            return len(self._robots)

    def register(self, name: str, controller: RobotController) -> RobotController:
        """Add a controller under name. Re-registering a name raises ValueError."""
        with self._lock:
            if name in self._robots:
                raise ValueError(f"Robot {name!r} is already registered")
            self._robots[name] = controller
        logger.info(f"[Registry] Registered robot {name}")
        return controller

    def unregister(self, name: str) -> RobotController:
        """Remove and return the controller. It is not stopped."""
        with self._lock:
            controller = self._robots.pop(name, None)
        if controller is None:
            raise UnknownRobot(name)
        logger.info(f"[Registry] Unregistered robot {name}")
        return controller

    def get(self, name: str) -> RobotController:
        with self._lock:
            controller = self._robots.get(name)
        if controller is None:
            raise UnknownRobot(name)
        return controller

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._robots)

    def start_robot(self, name: str, config: Optional[RobotConfig] = None, **kwargs) -> RobotController:
        """Create a controller and register it. kwargs go to RobotController."""
        if name in self:
            raise ValueError(f"Robot {name!r} is already registered")
        controller = RobotController(config, name=name, **kwargs)
        try:
            return self.register(name, controller)
        except ValueError:
            controller.stop()
            raise

    def stop_robot(self, name: str) -> None:
        self.unregister(name).stop()

    def stop_all(self) -> None:
        with self._lock:
            robots = list(self._robots.items())
            self._robots.clear()
        for name, controller in robots:
            controller.stop()
        if robots:
            logger.info(f"[Registry] Stopped {len(robots)} robots")
