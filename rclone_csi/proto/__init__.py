"""
CSI protobuf messages and gRPC stubs, compiled from csi.proto at import time.
The proto path is resolved against sys.path, so the directory holding the
rclone_csi package must be importable (site-packages, or the repo root).
"""
import grpc

csi_pb2, csi_pb2_grpc = grpc.protos_and_services("rclone_csi/proto/csi.proto")
