"""
Test Buddy - Folder API Routes
Pro plan folders for organising tests
"""
from typing import Annotated

from fastapi import APIRouter, Depends, status

from testbuddy.api.deps import Services, require_feature
from testbuddy.schemas.folder import Folder, FolderCreate, FolderUpdate
from testbuddy.schemas.user import UserProfile

router = APIRouter(prefix="/folders", tags=["Folders"])

FolderUser = Annotated[UserProfile, Depends(require_feature("folders"))]


@router.get("", response_model=list[Folder], summary="List my folders")
async def list_folders(profile: FolderUser, services: Services) -> list[Folder]:
    return await services.firebase.get_user_folders(profile.uid)


@router.post("", response_model=Folder, status_code=status.HTTP_201_CREATED, summary="Create a folder")
async def create_folder(payload: FolderCreate, profile: FolderUser, services: Services) -> Folder:
    return await services.firebase.create_folder(profile.uid, payload)


@router.patch("/{folder_id}", response_model=Folder, summary="Update a folder")
async def update_folder(
    folder_id: str,
    payload: FolderUpdate,
    profile: FolderUser,
    services: Services,
) -> Folder:
    return await services.firebase.update_folder(profile.uid, folder_id, payload)


@router.delete(
    "/{folder_id}",
    summary="Delete a folder",
    description="Tests in the folder are moved to unorganized first.",
)
async def delete_folder(folder_id: str, profile: FolderUser, services: Services) -> dict:
    reassigned = await services.firebase.delete_folder(profile.uid, folder_id)
    return {"deleted": folder_id, "reassignedTests": reassigned}
