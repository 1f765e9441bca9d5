"""
Stand-in for the Hubtel receive money, transaction status and preapproval APIs.

Wallet behaviour is chosen by the last digits of the customer number:
    ...0000  -> insufficient funds (2001)
    ...4000  -> validation rejection (4000)
    ...5000  -> HTTP 500
    anything else -> accepted (0001), settled later with /mock/transactions/{ref}/complete
"""

import uuid
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Hubtel Server", version="1.0.0")

TRANSACTIONS: dict[str, dict] = {}
PREAPPROVALS: dict[str, dict] = {}

OTP_CODE = "1234"


def reset() -> None:
    TRANSACTIONS.clear()
    PREAPPROVALS.clear()


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/merchantaccount/merchants/{pos_sales_id}/receive/mobilemoney")
async def receive_mobile_money(pos_sales_id: str, request: Request):
    body = await request.json()
    msisdn = str(body.get("CustomerMsisdn", ""))
    reference = body.get("ClientReference")

    if msisdn.endswith("5000"):
        return JSONResponse(status_code=500, content={"Message": "Internal error"})
    if msisdn.endswith("4000"):
        return JSONResponse(status_code=400, content={"ResponseCode": "4000", "Message": "Validation error"})
    if msisdn.endswith("0000"):
        return {"ResponseCode": "2001", "Message": "Insufficient funds", "Data": {"ClientReference": reference}}

    transaction_id = uuid.uuid4().hex
    TRANSACTIONS[reference] = {
        "status": "Pending",
        "transactionId": transaction_id,
        "externalTransactionId": None,
        "amount": body.get("Amount"),
        "msisdn": msisdn,
    }
    return {
        "ResponseCode": "0001",
        "Message": "Transaction pending. Expect callback request for final state",
        "Data": {"TransactionId": transaction_id, "ClientReference": reference, "Amount": body.get("Amount")},
    }


@app.get("/transactions/{pos_sales_id}/status")
def transaction_status(pos_sales_id: str, clientReference: str):
    transaction = TRANSACTIONS.get(clientReference)
    if transaction is None:
        raise HTTPException(status_code=404, detail="transaction not found")
    return {
        "message": "Successful",
        "responseCode": "0000",
        "data": {
            "clientReference": clientReference,
            "status": transaction["status"],
            "transactionId": transaction["transactionId"],
            "externalTransactionId": transaction["externalTransactionId"],
            "amount": transaction["amount"],
        },
    }


@app.post("/mock/transactions/{reference}/complete")
def complete_transaction(reference: str, status: str = "Paid"):
    """Test hook: move a pending charge to its final provider state"""
    transaction = TRANSACTIONS.get(reference)
    if transaction is None:
        raise HTTPException(status_code=404, detail="transaction not found")
    transaction["status"] = status
    if status == "Paid":
        transaction["externalTransactionId"] = uuid.uuid4().hex[:12]
    return transaction


@app.post("/api/v2/merchant/{pos_sales_id}/preapproval/initiate")
async def initiate_preapproval(pos_sales_id: str, request: Request):
    body = await request.json()
    reference = body.get("clientReferenceId")
    channel = body.get("channel", "")
    verification_type = "USSD" if channel.startswith("mtn") else "OTP"
    PREAPPROVALS[reference] = {
        "hubtelPreApprovalId": uuid.uuid4().hex,
        "clientReferenceId": reference,
        "customerMsisdn": body.get("customerMsisdn"),
        "preapprovalStatus": "PENDING",
        "verificationType": verification_type,
        "otpPrefix": "AB" if verification_type == "OTP" else None,
    }
    return {"message": "Success", "code": "2000", "data": PREAPPROVALS[reference]}


@app.post("/api/v2/merchant/{pos_sales_id}/preapproval/verifyotp")
async def verify_otp(pos_sales_id: str, request: Request):
    body = await request.json()
    preapproval = PREAPPROVALS.get(body.get("clientReferenceId"))
    if preapproval is None:
        return JSONResponse(status_code=404, content={"message": "Preapproval not found"})
    if body.get("otpCode") != OTP_CODE:
        return JSONResponse(status_code=400, content={"message": "Invalid OTP"})
    preapproval["preapprovalStatus"] = "APPROVED"
    return {"message": "Success", "code": "2000", "data": preapproval}


@app.get("/api/v2/merchant/{pos_sales_id}/preapproval/{reference}/status")
def preapproval_status(pos_sales_id: str, reference: str):
    preapproval = PREAPPROVALS.get(reference)
    if preapproval is None:
        return JSONResponse(status_code=404, content={"message": "Preapproval not found"})
    return {"message": "Success", "code": "2000", "data": preapproval}


@app.get("/api/v2/merchant/{pos_sales_id}/preapproval/{msisdn}/cancel")
def cancel_preapproval(pos_sales_id: str, msisdn: str):
    cancelled = False
    for preapproval in PREAPPROVALS.values():
        if preapproval["customerMsisdn"] == msisdn and preapproval["preapprovalStatus"] in ("APPROVED", "PENDING"):
            preapproval["preapprovalStatus"] = "CANCELLED"
            cancelled = True
    return {"message": "Success" if cancelled else "No active preapproval", "code": "2000", "data": cancelled}
