"""
FastAPI server for RoArm robots - HTTP bridge to the control layer

Every robot endpoint is addressed by registry name: /api/robots/{name}/...
Robot calls block on the controller's actor, so those endpoints are plain
def functions and run in FastAPI's threadpool.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import Response

from roarm.communication import SerialCommunication
from roarm.config import RobotConfig, load_config
from roarm.errors import RecordingError, RoarmError, UnknownRobot
from roarm.recording import RecordingStore
from roarm.registry import RobotRegistry
from roarm.robot import RobotController
from roarm.utils.logging_handler import get_log_buffer, setup_logging
from roarm_api.models import (
    CommandResponse,
    ConnectRequest,
    CustomCommandRequest,
    JointsResponse,
    LedRequest,
    MissionCreateRequest,
    MissionDelayRequest,
    MissionPlayRequest,
    MissionStepRequest,
    MovePositionRequest,
    MoveJointsRequest,
    PositionResponse,
    RobotListResponse,
    RobotStatusResponse,
    TeachingReplayRequest,
    TeachingStartRequest,
    TeachingStopRequest,
    TorqueRequest,
)

logger = logging.getLogger('roarm_api')


def build_registry(config: Dict[str, Any]) -> RobotRegistry:
    """
    Create one controller per entry of api.robots.

    Entries are either a plain name (uses the robot section as-is) or a
    mapping with a 'name' key plus robot setting overrides, e.g.
    {name: left, port: /dev/ttyUSB1, robot_type: roarm_m3}.
    """
    registry = RobotRegistry()
    for entry in config.get('api', {}).get('robots') or ['default']:
        if isinstance(entry, dict):
            overrides = dict(entry)
            name = overrides.pop('name')
        else:
            name, overrides = str(entry), {}
        registry.start_robot(name, RobotConfig.from_config(config, **overrides))
    return registry


def create_app(config: Optional[Dict[str, Any]] = None,
               registry: Optional[RobotRegistry] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Loaded configuration (default: load_config())
        registry: Pre-built registry; built from config when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle"""
        app_config = config if config is not None else load_config()
        setup_logging(app_config.get('logging', {}), 'api')
        logger.info("Starting FastAPI server for RoArm robots")

        app.state.config = app_config
        app.state.registry = registry if registry is not None else build_registry(app_config)
        app.state.recordings = RecordingStore(
            app_config.get('teaching', {}).get('recordings_dir', 'recordings')
        )

        yield

        logger.info("Shutting down FastAPI server")
        app.state.registry.stop_all()

    app = FastAPI(
        title="RoArm Robot API",
        description="HTTP interface for RoArm M2/M3 robot control, drag teaching and replay.",
        version="1.0.0",
        lifespan=lifespan,
    )
    _register_routes(app)
    return app


# ============================================================================
# Helpers
# ============================================================================

def get_registry(request: Request) -> RobotRegistry:
    return request.app.state.registry


def get_robot(name: str, registry: RobotRegistry = Depends(get_registry)) -> RobotController:
    """Resolve a robot by name or answer 404"""
    try:
        return registry.get(name)
    except UnknownRobot as e:
        raise HTTPException(status_code=404, detail=str(e))


def execute_robot_command(func, *args, **kwargs) -> CommandResponse:
    """Execute a robot command and wrap the outcome in a CommandResponse"""
    try:
        result = func(*args, **kwargs)
    except RoarmError as e:
        logger.error(f"Robot command {getattr(func, '__name__', func)} failed: {e}")
        return CommandResponse(success=False, message=str(e), error=type(e).__name__)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if isinstance(result, str):
        return CommandResponse(success=True, message=result or "Command sent")
    if result is None:
        return CommandResponse(success=True, message="OK")
    return CommandResponse(success=True, message=str(result), data=result)


# ============================================================================
# Routes
# ============================================================================

def _register_routes(app: FastAPI):

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "RoArm Robot API Server",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "robots": "/api/robots",
                "health": "/health"
            }
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "robots": len(request.app.state.registry)
        }

    # Robot Registry Endpoints
    @app.get("/api/robots", response_model=RobotListResponse)
    async def list_robots(registry: RobotRegistry = Depends(get_registry)):
        """Names of all registered robots"""
        return RobotListResponse(robots=registry.names())

    @app.get("/api/robots/{name}/status", response_model=RobotStatusResponse)
    def get_robot_status(robot: RobotController = Depends(get_robot)):
        """Cached controller state (no device round trip)"""
        return RobotStatusResponse(**robot.snapshot())

    # Connection Endpoints
    @app.post("/api/robots/{name}/connect", response_model=CommandResponse)
    def connect_robot(request: Optional[ConnectRequest] = None, robot: RobotController = Depends(get_robot)):
        """Open the serial port"""
        port = request.port if request else None
        return execute_robot_command(robot.connect, port)

    @app.post("/api/robots/{name}/disconnect", response_model=CommandResponse)
    def disconnect_robot(robot: RobotController = Depends(get_robot)):
        """Close the serial port (discards an active drag teach session)"""
        return execute_robot_command(robot.disconnect)

    # Feedback Endpoints
    @app.get("/api/robots/{name}/position", response_model=PositionResponse)
    def get_position(robot: RobotController = Depends(get_robot)):
        """Query the current end effector position"""
        try:
            return PositionResponse(**robot.get_position().as_dict())
        except RoarmError as e:
            raise HTTPException(status_code=503, detail=f"{type(e).__name__}: {e}")

    @app.get("/api/robots/{name}/joints", response_model=JointsResponse)
    def get_joints(robot: RobotController = Depends(get_robot)):
        """Query the current joint angles in degrees"""
        try:
            return JointsResponse(**robot.get_joints().as_dict())
        except RoarmError as e:
            raise HTTPException(status_code=503, detail=f"{type(e).__name__}: {e}")

    # Motion Endpoints
    @app.post("/api/robots/{name}/move/position", response_model=CommandResponse)
    def move_position(request: MovePositionRequest, robot: RobotController = Depends(get_robot)):
        """Move the end effector to a position"""
        return execute_robot_command(
            robot.move_to_position,
            request.partial_position(),
            speed=request.speed,
            acceleration=request.acceleration,
            timeout_ms=request.timeout_ms
        )

    @app.post("/api/robots/{name}/move/joints", response_model=CommandResponse)
    def move_joints(request: MoveJointsRequest, robot: RobotController = Depends(get_robot)):
        """Move joints to angles in degrees"""
        return execute_robot_command(
            robot.move_joints,
            request.joints,
            speed=request.speed,
            timeout_ms=request.timeout_ms
        )

    @app.post("/api/robots/{name}/home", response_model=CommandResponse)
    def home_robot(robot: RobotController = Depends(get_robot)):
        """Home the robot"""
        return execute_robot_command(robot.home)

    @app.post("/api/robots/{name}/torque", response_model=CommandResponse)
    def set_torque(request: TorqueRequest, robot: RobotController = Depends(get_robot)):
        """Lock or release the joint motors"""
        return execute_robot_command(robot.set_torque, request.enabled)

    @app.post("/api/robots/{name}/led", response_model=CommandResponse)
    def set_led(request: LedRequest, robot: RobotController = Depends(get_robot)):
        """Set the LED color and brightness"""
        return execute_robot_command(robot.set_led, request.r, request.g, request.b, request.brightness)

    @app.post("/api/robots/{name}/command", response_model=CommandResponse)
    def send_command(request: CustomCommandRequest, robot: RobotController = Depends(get_robot)):
        """Send any command, validated against the schema unless raw is set"""
        if request.raw:
            return execute_robot_command(
                robot.send_custom_command,
                json.dumps(request.command, separators=(",", ":")),
                timeout_ms=request.timeout_ms
            )
        return execute_robot_command(robot.send_valid_command, request.command, timeout_ms=request.timeout_ms)

    # Mission Endpoints
    @app.post("/api/robots/{name}/missions", response_model=CommandResponse)
    def create_mission(request: MissionCreateRequest, robot: RobotController = Depends(get_robot)):
        """Create a mission on the device"""
        return execute_robot_command(robot.create_mission, request.name, request.intro)

    @app.post("/api/robots/{name}/missions/{mission}/steps", response_model=CommandResponse)
    def add_mission_step(mission: str, request: MissionStepRequest, robot: RobotController = Depends(get_robot)):
        """Append the current pose as a mission step"""
        return execute_robot_command(robot.add_mission_step, mission, request.speed)

    @app.post("/api/robots/{name}/missions/{mission}/delays", response_model=CommandResponse)
    def add_mission_delay(mission: str, request: MissionDelayRequest, robot: RobotController = Depends(get_robot)):
        """Append a delay to a mission"""
        return execute_robot_command(robot.add_mission_delay, mission, request.delay_ms)

    @app.post("/api/robots/{name}/missions/{mission}/play", response_model=CommandResponse)
    def play_mission(mission: str, request: MissionPlayRequest, robot: RobotController = Depends(get_robot)):
        """Run a stored mission on the device"""
        return execute_robot_command(robot.play_mission, mission, request.times)

    # Drag Teach Endpoints
    @app.post("/api/robots/{name}/teaching/start", response_model=CommandResponse)
    def start_teaching(request: TeachingStartRequest, robot: RobotController = Depends(get_robot)):
        """Release torque and start recording joint samples"""
        return execute_robot_command(robot.start_teaching, request.filename, request.sample_interval_ms)

    @app.post("/api/robots/{name}/teaching/stop", response_model=CommandResponse)
    def stop_teaching(request: Optional[TeachingStopRequest] = None, robot: RobotController = Depends(get_robot)):
        """Stop recording, re-enable torque and save the samples"""
        filename = request.filename if request else None
        return execute_robot_command(robot.stop_teaching, filename)

    @app.post("/api/robots/{name}/teaching/replay", response_model=CommandResponse)
    def replay_teaching(request: TeachingReplayRequest, robot: RobotController = Depends(get_robot)):
        """Replay a saved recording (blocks until finished)"""
        return execute_robot_command(robot.replay_teaching, request.filename, request.speed_multiplier)

    # Recording Endpoints
    @app.get("/api/recordings")
    async def list_recordings(request: Request):
        """List saved drag teach recordings"""
        store: RecordingStore = request.app.state.recordings
        recordings = store.list_recordings()
        return {"recordings": recordings, "count": len(recordings)}

    @app.get("/api/recordings/{filename}")
    async def get_recording(filename: str, request: Request):
        """Samples of one recording"""
        store: RecordingStore = request.app.state.recordings
        try:
            samples = store.load(filename)
        except RecordingError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {
            "filename": filename,
            "count": len(samples),
            "samples": [
                {"timestamped": s.timestamp_ms, "joints": s.joints_radians}
                for s in samples
            ]
        }

    # Configuration Endpoints
    @app.get("/api/config/com-ports")
    async def get_available_com_ports():
        """Get list of available serial ports"""
        try:
            ports = SerialCommunication.list_ports()
        except OSError as e:
            raise HTTPException(status_code=500, detail=f"Failed to list COM ports: {str(e)}")
        return {
            "ports": [
                {"device": device, **info}
                for device, info in ports.items()
            ]
        }

    # Logging Endpoints
    @app.get("/api/logs")
    async def get_logs(
        level: Optional[str] = Query(None, description="Filter by log level"),
        source: Optional[str] = Query(None, description="Filter by source/module"),
        limit: Optional[int] = Query(100, description="Maximum number of logs", ge=1, le=10000)
    ):
        """Get recent logs from the buffer"""
        logs = get_log_buffer().get_logs(level=level, source=source, limit=limit)
        return {
            "logs": logs,
            "count": len(logs),
            "filters": {
                "level": level,
                "source": source,
                "limit": limit
            }
        }

    @app.delete("/api/logs")
    async def clear_logs():
        """Clear the log buffer"""
        get_log_buffer().clear_logs()
        logger.info("Log buffer cleared")
        return {"message": "Log buffer cleared successfully"}

    @app.get("/api/logs/export")
    async def export_logs(
        format: Literal["json", "text"] = Query("json", description="Export format")
    ):
        """Export logs as downloadable file"""
        content = get_log_buffer().export_logs(format=format)
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        if format == "json":
            return Response(
                content=content,
                media_type="application/json",
                headers={"Content-Disposition": f"attachment; filename=roarm_logs_{stamp}.json"}
            )
        return Response(
            content=content,
            media_type="text/plain",
            headers={"Content-Disposition": f"attachment; filename=roarm_logs_{stamp}.txt"}
        )


app = create_app()


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    api_config = load_config().get('api', {})
    host = api_config.get('host', '0.0.0.0')
    port = api_config.get('port', 8000)

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True
    )
