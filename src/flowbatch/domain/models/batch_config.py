from pathlib import Path

from pydantic import BaseModel, Field

MIN_PARALLELISM = 1
MAX_PARALLELISM = 50


class BatchConfiguration(BaseModel):
    parallelism: int = Field(
        default=5,
        ge=MIN_PARALLELISM,
        le=MAX_PARALLELISM,
        description="Number of tasks dispatched together in one slice.",
    )
    singleton_mode: bool = Field(
        default=True, description="Use the de-duplicating invoke_singleton endpoint."
    )
    write_output_to_file: bool = Field(
        default=True, description="Every task must carry a filename for its output."
    )
    output_directory: str = Field(
        default_factory=lambda: str(Path.cwd()),
        description="Directory receiving one output file per task.",
    )
