"""Semantic-convention attribute names used for CI telemetry."""

# CI/CD system
ATTRIBUTE_CI_VENDOR = "ci.vendor"
ATTRIBUTE_CI_VERSION = "ci.version"

ATTRIBUTE_CI_VENDOR_DRONE = "drone"

ATTRIBUTE_CI_WORKFLOW_ITEM_STATUS = "ci.workflow_item.status"

# Drone workflow
ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND = "ci.drone.workflow_item.kind"
ATTRIBUTE_DRONE_WORKFLOW_EVENT = "ci.drone.workflow.event"
ATTRIBUTE_DRONE_WORKFLOW_TITLE = "ci.drone.workflow.title"

ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND_BUILD = "build"
ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND_STAGE = "stage"
ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND_STEP = "step"

# Drone build
ATTRIBUTE_DRONE_BUILD_ID = "ci.drone.build.id"
ATTRIBUTE_DRONE_BUILD_NUMBER = "ci.drone.build.number"
ATTRIBUTE_DRONE_BUILD_MESSAGE = "ci.drone.build.message"

# Experimental build attributes
ATTRIBUTE_DRONE_BUILD_BEFORE = "ci.drone.build.before"
ATTRIBUTE_DRONE_BUILD_AFTER = "ci.drone.build.after"
ATTRIBUTE_DRONE_BUILD_SOURCE = "ci.drone.build.source"
ATTRIBUTE_DRONE_BUILD_TARGET = "ci.drone.build.target"
ATTRIBUTE_DRONE_BUILD_REF = "ci.drone.build.ref"
ATTRIBUTE_DRONE_BUILD_LINK = "ci.drone.build.link"
ATTRIBUTE_DRONE_BUILD_PARENT = "ci.drone.build.parent"

# Drone stage
ATTRIBUTE_DRONE_STAGE_ID = "ci.drone.stage.id"
ATTRIBUTE_DRONE_STAGE_NUMBER = "ci.drone.stage.number"
ATTRIBUTE_DRONE_STAGE_NAME = "ci.drone.stage.name"

# Drone step
ATTRIBUTE_DRONE_STEP_ID = "ci.drone.step.id"
ATTRIBUTE_DRONE_STEP_NUMBER = "ci.drone.step.number"
ATTRIBUTE_DRONE_STEP_NAME = "ci.drone.step.name"

# VCS
ATTRIBUTE_VCS_TYPE = "vcs.type"
ATTRIBUTE_VCS_TYPE_GIT = "git"

# Git repository
ATTRIBUTE_GIT_HTTP_URL = "git.url.http"
ATTRIBUTE_GIT_SSH_URL = "git.url.ssh"
ATTRIBUTE_GIT_WWW_URL = "git.url.www"
ATTRIBUTE_GIT_REPO_NAME = "git.repo.name"
ATTRIBUTE_GIT_BRANCH_NAME = "git.branch.name"

# General OpenTelemetry resource conventions
ATTRIBUTE_SERVICE_NAME = "service.name"
ATTRIBUTE_SERVICE_VERSION = "service.version"