"""Container images stored in ECR repositories."""

from typing import TYPE_CHECKING, Dict, List

from ..backoff import RemoteClient
from ..exceptions import RemoteNotFoundError, RemotePermanentError
from ..logger import logger
from ..schemas import ResourceDescriptor
from ..table_fields import ResourceKind

if TYPE_CHECKING:
    from ..context import AppContext


def list_repositories(remote: RemoteClient) -> List[str]:
    result = remote.paginate("ecr", "describe_repositories")
    return [r["RepositoryName"] for r in result.get("repositories", [])]


def list_repository_images(remote: RemoteClient, repository: str) -> List[dict]:
    result = remote.paginate("ecr", "describe_images", repositoryName=repository)
    return result.get("imageDetails", [])


def list_images(ctx: "AppContext") -> List[ResourceDescriptor]:
    descriptors = []
    for repository in list_repositories(ctx.remote):
        for image in list_repository_images(ctx.remote, repository):
            tags = image.get("imageTags", [])
            descriptors.append(
                ResourceDescriptor(
                    kind=ResourceKind.ECR,
                    id=image["imageDigest"],
                    attributes={
                        "repository": repository,
                        "tag": tags[0] if tags else "None",
                        "pushed_at": str(image.get("imagePushedAt", "")),
                        "size_mb": round(
                            image.get("imageSizeInBytes", 0) / 1024 / 1024, 2
                        ),
                    },
                    metadata=image,
                )
            )
    return descriptors


def delete_images(remote: RemoteClient, repository: str, digests: List[str]) -> Dict:
    """Delete images of a repository by digest.

    Raises:
        RemoteNotFoundError: All the images were already missing.
        RemotePermanentError: ECR refused to delete any of the images.
    """
    if not digests:
        return {"deleted": 0}
    result = remote.call(
        "ecr",
        "batch_delete_image",
        repositoryName=repository,
        imageIds=[{"imageDigest": d} for d in digests],
    )
    failures = result.get("failures", [])
    missing = [f for f in failures if f.get("failureCode") == "ImageNotFound"]
    if failures and len(missing) == len(failures) == len(digests):
        raise RemoteNotFoundError("ecr", "batch_delete_image", "ImageNotFound")
    others = [f for f in failures if f not in missing]
    if others:
        raise RemotePermanentError(
            "ecr",
            "batch_delete_image",
            others[0].get("failureCode", ""),
            others[0].get("failureReason", ""),
        )
    return {"deleted": len(result.get("imageIds", []))}


def cleanup_untagged_images(remote: RemoteClient) -> Dict[str, int]:
    """Delete the untagged images of all repositories.

    Repositories or images removed in the meantime count as nothing deleted.
    """
    deleted = {}
    for repository in list_repositories(remote):
        try:
            digests = [
                i["imageDigest"]
                for i in list_repository_images(remote, repository)
                if not i.get("imageTags")
            ]
            result = delete_images(remote, repository, digests)
        except RemoteNotFoundError:
            logger.info("Untagged images of %s are already gone", repository)
            deleted[repository] = 0
            continue
        deleted[repository] = result["deleted"]
        logger.info(
            "%d untagged image(s) deleted from %s", deleted[repository], repository
        )
    return deleted
